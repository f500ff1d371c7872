"""
Trigger expressions for scheduled tasks.

A trigger is either a five-field crontab expression or one of the phrases
below, which are translated to crontab form:

===========================  ==================
phrase                       crontab
===========================  ==================
``every minute``             ``* * * * *``
``every N minutes``          ``*/N * * * *``
``every N hours``            ``0 */N * * *``
``hourly``                   ``0 * * * *``
``hourly at :MM``            ``MM * * * *``
``daily``                    ``0 0 * * *``
``daily at HH:MM``           ``MM HH * * *``
``weekly``                   ``0 0 * * sun``
``monthly``                  ``0 0 1 * *``
===========================  ==================

Day-of-week fields are evaluated by APScheduler, where ``0`` is Monday;
prefer weekday names (``mon``-``sun``) in raw crontab expressions.
"""

import re
from datetime import datetime

from apscheduler.triggers.cron import CronTrigger


class InvalidTriggerError(ValueError):
    """A trigger expression could not be parsed."""


_PHRASES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"every minute"), "* * * * *"),
    (re.compile(r"every (?P<n>\d+) minutes?"), "*/{n} * * * *"),
    (re.compile(r"every (?P<n>\d+) hours?"), "0 */{n} * * *"),
    (re.compile(r"hourly"), "0 * * * *"),
    (re.compile(r"hourly at :?(?P<minute>\d{1,2})"), "{minute} * * * *"),
    (re.compile(r"daily"), "0 0 * * *"),
    (re.compile(r"daily at (?P<hour>\d{1,2}):(?P<minute>\d{2})"), "{minute} {hour} * * *"),
    (re.compile(r"weekly"), "0 0 * * sun"),
    (re.compile(r"monthly"), "0 0 1 * *"),
]


def to_crontab(expression: str) -> str:
    """
    Translate a trigger expression into a crontab expression.

    Raises:
        InvalidTriggerError: If the expression is neither a known phrase nor
            five whitespace-separated fields.
    """
    text = " ".join(expression.strip().lower().split())

    for pattern, template in _PHRASES:
        match = pattern.fullmatch(text)
        if match is None:
            continue
        fields = {k: int(v) for k, v in match.groupdict().items()}
        if "n" in fields and fields["n"] < 1:
            raise InvalidTriggerError(f"Interval must be positive: {expression!r}")
        if fields.get("minute", 0) > 59 or fields.get("hour", 0) > 23:
            raise InvalidTriggerError(f"Time out of range: {expression!r}")
        return template.format(**fields)

    if len(text.split(" ")) == 5:
        return text

    raise InvalidTriggerError(f"Unrecognized trigger expression: {expression!r}")


def floor_to_minute(value: datetime) -> datetime:
    """Drop seconds and microseconds."""
    return value.replace(second=0, microsecond=0)


class Trigger:
    """
    A parsed trigger expression evaluated at minute resolution.

    Args:
        expression: Crontab expression or phrase.
        timezone: Timezone the expression is interpreted in.
    """

    def __init__(self, expression: str, timezone: str = "UTC"):
        self.expression = expression
        self.crontab = to_crontab(expression)
        try:
            self._cron = CronTrigger.from_crontab(self.crontab, timezone=timezone)
        except ValueError as e:
            raise InvalidTriggerError(f"Invalid crontab {self.crontab!r}: {e}") from e

    def is_due(self, at: datetime) -> bool:
        """
        Check whether the trigger fires in the minute containing ``at``.

        Args:
            at: An aware datetime.
        """
        minute = floor_to_minute(at)
        fire_time = self._cron.get_next_fire_time(None, minute)
        return fire_time is not None and fire_time == minute

    def next_after(self, at: datetime) -> datetime | None:
        """First fire time strictly after the minute containing ``at``."""
        return self._cron.get_next_fire_time(floor_to_minute(at), at)

    def __repr__(self) -> str:
        return f"Trigger({self.expression!r} -> {self.crontab!r})"
