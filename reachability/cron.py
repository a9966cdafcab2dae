# -*- codeing = utf-8 -*-
"""Cron line parsing for the schedule mode.

Accepted forms::

    min hour day month dow [timezone]
    sec min hour day month dow [timezone]

``dow`` follows crontab numbering (``0`` and ``7`` are Sunday) and is
rewritten into weekday names before it reaches APScheduler, whose numeric
weekdays start on Monday.

When both ``day`` and ``dow`` are restricted, a fire needs both to match
(APScheduler's rule), unlike crontab, which fires when either matches.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger

from .exceptions import ConfigurationError

_WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")
_FIVE_FIELDS = ("minute", "hour", "day", "month", "day_of_week")
_SIX_FIELDS = ("second",) + _FIVE_FIELDS
_LETTER = re.compile(r"[A-Za-z]")


def _looks_like_timezone(token: str) -> bool:
    if not _LETTER.search(token):
        return False
    lowered = token.lower()
    parts = re.split(r"[,\-/]", lowered)
    return not all(part in _WEEKDAY_NAMES or part.isdigit() or part == "*"
                   for part in parts)


def _weekday_number(token: str, expression: str) -> int:
    lowered = token.lower()
    if lowered in _WEEKDAY_NAMES:
        return _WEEKDAY_NAMES.index(lowered)
    try:
        value = int(lowered)
    except ValueError as exc:
        raise ConfigurationError(
            f"Invalid day-of-week {token!r} in schedule {expression!r}"
        ) from exc
    if not 0 <= value <= 7:
        raise ConfigurationError(
            f"Day-of-week {value} out of range in schedule {expression!r}")
    return value % 7


def translate_day_of_week(field: str, expression: str = "") -> str:
    """Rewrite a crontab day-of-week field into explicit weekday names."""

    if field in ("*", "?"):
        return "*"

    days = set()
    for part in field.split(","):
        base, _, step_text = part.partition("/")
        try:
            step = int(step_text) if step_text else 1
        except ValueError as exc:
            raise ConfigurationError(
                f"Invalid day-of-week step {part!r} in schedule {expression!r}"
            ) from exc
        if step <= 0:
            raise ConfigurationError(
                f"Day-of-week step must be positive in schedule {expression!r}")

        if base == "*":
            first, last = 0, 6
        elif "-" in base:
            start_text, _, end_text = base.partition("-")
            first = _weekday_number(start_text, expression)
            last = _weekday_number(end_text, expression)
            end_token = end_text.strip().lower()
            if end_token == "7" or (end_token == "sun" and first > 0):
                last = 7
            if last < first:
                raise ConfigurationError(
                    f"Day-of-week range {base!r} runs backwards in schedule "
                    f"{expression!r}")
        else:
            first = _weekday_number(base, expression)
            last = 6 if step_text else first

        days.update(day % 7 for day in range(first, last + 1, step))

    return ",".join(_WEEKDAY_NAMES[day] for day in sorted(days))


@dataclass(frozen=True)
class CronSchedule:
    """A validated cron line ready to be turned into an APScheduler trigger."""

    expression: str
    fields: Tuple[Tuple[str, str], ...]
    timezone: Optional[str] = None

    def trigger_arguments(self) -> Dict[str, object]:
        arguments: Dict[str, object] = dict(self.fields)
        arguments.setdefault("second", "0")
        if self.timezone is not None:
            arguments["timezone"] = ZoneInfo(self.timezone)
        return arguments

    def build_trigger(self) -> CronTrigger:
        return CronTrigger(**self.trigger_arguments())


def parse_schedule(expression: str) -> CronSchedule:
    """Validate ``expression`` and return the parsed ``CronSchedule``.

    Raises ``ConfigurationError`` for malformed lines and unknown time zones.
    """

    if expression is None or not str(expression).strip():
        raise ConfigurationError("Schedule must not be empty")

    text = str(expression).strip()
    tokens = text.split()
    timezone = None
    if len(tokens) in (6, 7) and _looks_like_timezone(tokens[-1]):
        timezone = tokens.pop()
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigurationError(
                f"Unknown time zone {timezone!r} in schedule {text!r}") from exc

    if len(tokens) == 5:
        names = _FIVE_FIELDS
    elif len(tokens) == 6:
        names = _SIX_FIELDS
    else:
        raise ConfigurationError(
            f"Schedule {text!r} must have five or six fields, optionally "
            "followed by a time zone")

    values = dict(zip(names, tokens))
    values["day_of_week"] = translate_day_of_week(values["day_of_week"], text)
    if values["day"] == "?":
        values["day"] = "*"

    schedule = CronSchedule(expression=text,
                            fields=tuple(values.items()),
                            timezone=timezone)
    try:
        schedule.build_trigger()
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            f"Invalid schedule {text!r}: {exc}") from exc
    return schedule


__all__ = ["CronSchedule", "parse_schedule", "translate_day_of_week"]
