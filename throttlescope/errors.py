"""
Exception types for ThrottleScope.

Only conditions that stop a run are exceptions. Unreliable calibrations,
empty measurement sets and quantum overruns are reported as data.

Author: Mridankan Mandal
"""


class ThrottleScopeError(Exception):
    """Base class for all ThrottleScope errors."""


class UnsupportedCapability(ThrottleScopeError, RuntimeError):
    """The host provides no process CPU-time accounting."""


class PlanRefinementError(ThrottleScopeError, RuntimeError):
    """An adaptive plan was refined more than once."""
