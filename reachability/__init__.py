# -*- codeing = utf-8 -*-
"""Periodic network reachability probing."""

from . import cron, http_probe, icmp_probe, network_probe, probes
from .events import MeasurementEvent, execute_tick
from .exceptions import (
    ConfigurationError,
    ProbeSetupError,
    ReachabilityError,
    SchedulingEngineFailure,
)
from .probes import SUPPORTED_MODES, Probe, create_probe
from .service import LoopState, PingInput, stoppable_sleep

__all__ = [
    "ConfigurationError",
    "LoopState",
    "MeasurementEvent",
    "PingInput",
    "Probe",
    "ProbeSetupError",
    "ReachabilityError",
    "SUPPORTED_MODES",
    "SchedulingEngineFailure",
    "create_probe",
    "cron",
    "execute_tick",
    "http_probe",
    "icmp_probe",
    "network_probe",
    "probes",
    "stoppable_sleep",
]
