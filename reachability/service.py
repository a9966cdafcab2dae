# -*- codeing = utf-8 -*-
"""Scheduling loop that drives the probe on an interval or a cron schedule."""

from __future__ import annotations

import datetime as _dt
import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional

from apscheduler.events import EVENT_JOB_MAX_INSTANCES, EVENT_JOB_MISSED
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers import SchedulerNotRunningError
from apscheduler.schedulers.background import BackgroundScheduler

from configuration import PingSettings

from .cron import CronSchedule, parse_schedule
from .events import MeasurementEvent, Sink, execute_tick
from .exceptions import ConfigurationError, SchedulingEngineFailure
from .probes import Probe, create_probe

LOGGER = logging.getLogger(__name__)

SLEEP_GRANULARITY = 0.1
ENGINE_WATCH_INTERVAL = 0.5
# Fires allowed to wait behind a running tick in the single worker.
MAX_PENDING_FIRES = 8
_TICK_JOB_ID = "reachability-tick"


class LoopState(Enum):
    """Observable state of ``PingInput``."""

    IDLE = "idle"
    RUNNING = "running"
    SLEEPING = "sleeping"
    ARMED = "armed"
    FIRING = "firing"
    STOPPED = "stopped"


def stoppable_sleep(
    duration: float,
    stop_event: threading.Event,
    *,
    granularity: float = SLEEP_GRANULARITY,
) -> bool:
    """Sleep for ``duration`` seconds unless ``stop_event`` gets set first.

    The flag is re-checked at least every ``granularity`` seconds. Returns
    ``True`` when the sleep was interrupted.
    """

    deadline = time.monotonic() + max(float(duration), 0.0)
    while not stop_event.is_set():
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False
        stop_event.wait(min(granularity, remaining))
    return True


def default_scheduler_factory() -> BackgroundScheduler:
    return BackgroundScheduler(
        executors={"default": ThreadPoolExecutor(max_workers=1)},
        job_defaults={
            "coalesce": False,
            "max_instances": MAX_PENDING_FIRES,
            "misfire_grace_time": None,
        },
    )


class PingInput:
    """Probe one host repeatedly and hand every measurement to a sink.

    ``register`` builds the probe (and parses the schedule) so configuration
    and setup errors surface before any scheduling starts. ``run`` blocks the
    calling thread until ``stop`` is called from elsewhere.
    """

    def __init__(
        self,
        settings: PingSettings,
        *,
        probe_factory: Optional[Callable[..., Probe]] = None,
        scheduler_factory: Optional[Callable[[], BackgroundScheduler]] = None,
        clock: Optional[Callable[[], _dt.datetime]] = None,
        sleep_granularity: float = SLEEP_GRANULARITY,
        engine_watch_interval: float = ENGINE_WATCH_INTERVAL,
    ) -> None:
        self._settings = settings
        self._probe_factory = probe_factory or create_probe
        self._scheduler_factory = scheduler_factory or default_scheduler_factory
        self._clock = clock
        self._sleep_granularity = sleep_granularity
        self._engine_watch_interval = engine_watch_interval

        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._probe: Optional[Probe] = None
        self._schedule: Optional[CronSchedule] = None
        self._engine: Optional[BackgroundScheduler] = None
        self._failure: Optional[BaseException] = None
        self._state = LoopState.IDLE

    @property
    def settings(self) -> PingSettings:
        return self._settings

    @property
    def probe(self) -> Optional[Probe]:
        return self._probe

    @property
    def schedule(self) -> Optional[CronSchedule]:
        return self._schedule

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def register(self) -> None:
        if self._probe is not None:
            return

        settings = self._settings
        if settings.schedule is not None:
            self._schedule = parse_schedule(settings.schedule)
        elif not settings.interval or settings.interval <= 0:
            raise ConfigurationError(
                f"Interval must be a positive number of seconds, got {settings.interval!r}"
            )
        if not settings.timeout or settings.timeout <= 0:
            raise ConfigurationError(
                f"Timeout must be a positive number of seconds, got {settings.timeout!r}"
            )
        if settings.port is not None and not 0 < settings.port <= 65535:
            raise ConfigurationError(
                f"Port must be between 1 and 65535, got {settings.port!r}")

        self._probe = self._probe_factory(
            settings.mode,
            timeout=settings.timeout,
            port=settings.port,
        )
        LOGGER.info(
            "reachability.loop.registered host=%s mode=%s interval=%s schedule=%s",
            settings.host,
            settings.mode,
            settings.interval,
            settings.schedule,
        )

    def run(self, sink: Sink) -> None:
        """Tick until ``stop`` is called; re-raise fatal errors."""

        self.register()
        try:
            if self._schedule is not None:
                self._run_schedule(sink)
            else:
                self._run_interval(sink)
        finally:
            self._set_state(LoopState.STOPPED)
            self._close_probe()

        if self._failure is not None:
            raise self._failure

    def start(self, sink: Sink) -> None:
        """Alias of ``run`` for hosts that speak in start/stop pairs."""

        self.run(sink)

    def stop(self) -> None:
        """Request termination without waiting for the loop to exit."""

        if self._stop_event.is_set():
            return
        self._stop_event.set()
        LOGGER.info("reachability.loop.stop_requested host=%s",
                    self._settings.host)

        with self._lock:
            engine = self._engine
        if engine is not None:
            try:
                engine.pause()
            except SchedulerNotRunningError:
                pass

    def _tick(self, sink: Sink) -> MeasurementEvent:
        return execute_tick(self._probe, self._settings.host, sink,
                            clock=self._clock)

    def _run_interval(self, sink: Sink) -> None:
        interval = float(self._settings.interval)
        while not self._stop_event.is_set():
            self._set_state(LoopState.RUNNING)
            self._tick(sink)
            self._set_state(LoopState.SLEEPING)
            if stoppable_sleep(interval,
                               self._stop_event,
                               granularity=self._sleep_granularity):
                break

    def _run_schedule(self, sink: Sink) -> None:
        if self._stop_event.is_set():
            return

        engine = self._scheduler_factory()
        engine.add_listener(self._on_engine_event,
                            EVENT_JOB_MISSED | EVENT_JOB_MAX_INSTANCES)
        try:
            engine.add_job(
                self._fire,
                trigger=self._schedule.build_trigger(),
                args=(sink,),
                id=_TICK_JOB_ID,
                name=f"ping {self._settings.host}",
            )
            engine.start()
        except Exception as exc:
            raise SchedulingEngineFailure(
                f"Unable to start the schedule engine: {exc}") from exc

        with self._lock:
            self._engine = engine
        if self._stop_event.is_set():
            engine.pause()
        self._set_state(LoopState.ARMED)
        LOGGER.info("reachability.schedule.armed host=%s schedule=%s",
                    self._settings.host, self._schedule.expression)

        try:
            while not self._stop_event.wait(self._engine_watch_interval):
                if not engine.running:
                    raise SchedulingEngineFailure(
                        "Schedule engine stopped while the loop was armed")
        finally:
            with self._lock:
                self._engine = None
            if engine.running:
                engine.shutdown(wait=True)

    def _fire(self, sink: Sink) -> None:
        if self._stop_event.is_set():
            return
        self._set_state(LoopState.FIRING)
        try:
            self._tick(sink)
        except Exception as exc:
            LOGGER.exception(
                "reachability.schedule.tick_error host=%s error=%s",
                self._settings.host,
                exc,
            )
            self._failure = exc
            self.stop()
        finally:
            if not self._stop_event.is_set():
                self._set_state(LoopState.ARMED)

    def _on_engine_event(self, event) -> None:
        if event.code == EVENT_JOB_MAX_INSTANCES:
            LOGGER.warning(
                "reachability.schedule.fire_dropped host=%s pending_limit=%s",
                self._settings.host,
                MAX_PENDING_FIRES,
            )
        else:
            LOGGER.warning(
                "reachability.schedule.fire_missed host=%s scheduled=%s",
                self._settings.host,
                getattr(event, "scheduled_run_time", None),
            )

    def _set_state(self, state: LoopState) -> None:
        if self._state is state:
            return
        LOGGER.debug("reachability.loop.state host=%s from=%s to=%s",
                     self._settings.host, self._state.value, state.value)
        self._state = state

    def _close_probe(self) -> None:
        probe = self._probe
        if probe is None:
            return
        try:
            probe.close()
        except Exception as exc:  # pragma: no cover - best effort cleanup
            LOGGER.warning("reachability.probe.close_error probe=%r error=%s",
                           probe, exc)


__all__ = [
    "LoopState",
    "PingInput",
    "default_scheduler_factory",
    "stoppable_sleep",
]
