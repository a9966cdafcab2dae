# -*- codeing = utf-8 -*-
"""Measurement events and the tick that produces them."""

from __future__ import annotations

import datetime as _dt
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from .probes import UNMEASURED, Probe

LOGGER = logging.getLogger(__name__)


def _utc_now() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


@dataclass(frozen=True)
class MeasurementEvent:
    """Outcome of one probe attempt against ``host``."""

    success: bool
    duration: float
    host: str
    timestamp: _dt.datetime = field(default_factory=_utc_now)

    def to_dict(self) -> Dict[str, object]:
        return {
            "success": self.success,
            "duration": self.duration,
            "host": self.host,
            "timestamp": self.timestamp.isoformat(),
        }


Sink = Callable[[MeasurementEvent], None]


def execute_tick(
    probe: Probe,
    host: str,
    sink: Sink,
    *,
    clock: Optional[Callable[[], _dt.datetime]] = None,
) -> MeasurementEvent:
    """Run one probe attempt and hand exactly one event to ``sink``.

    A failed attempt is still reported; it is data, not an error.
    """

    success = bool(probe.attempt(host))
    duration = probe.last_duration()
    if duration is None:
        duration = UNMEASURED
    timestamp = clock() if clock is not None else _utc_now()
    event = MeasurementEvent(
        success=success,
        duration=float(duration),
        host=host,
        timestamp=timestamp,
    )
    LOGGER.debug(
        "reachability.tick host=%s success=%s duration=%.6f",
        host,
        success,
        event.duration,
    )
    sink(event)
    return event


__all__ = ["MeasurementEvent", "Sink", "execute_tick"]
