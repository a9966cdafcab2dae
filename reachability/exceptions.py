# -*- codeing = utf-8 -*-
"""Error taxonomy for the reachability monitor."""


class ReachabilityError(Exception):
    """Base class for every error raised by the reachability monitor."""


class ConfigurationError(ReachabilityError):
    """Raised when the supplied settings cannot be turned into a running loop."""


class ProbeSetupError(ReachabilityError):
    """Raised when the probing mechanism itself cannot be created."""


class SchedulingEngineFailure(ReachabilityError):
    """Raised when the cron schedule engine fails to start or stops unexpectedly."""


__all__ = [
    "ConfigurationError",
    "ProbeSetupError",
    "ReachabilityError",
    "SchedulingEngineFailure",
]
