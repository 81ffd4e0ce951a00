"""
Daily run-time arithmetic for the alert scheduler.

Run times are local wall-clock times turned into cron expressions and
resolved with croniter, which keeps each run at its local hour across
DST changes. Sleeps are measured between UTC instants.
"""

from collections import defaultdict
from datetime import datetime, time, timezone, tzinfo
from typing import Dict, List, Sequence, Union
from zoneinfo import ZoneInfo

from croniter import croniter


def resolve_timezone(tz: Union[str, tzinfo]) -> tzinfo:
    """Accept an IANA zone name or a tzinfo instance."""
    if isinstance(tz, str):
        return ZoneInfo(tz)
    return tz


def cron_expressions(run_times: Sequence[time]) -> List[str]:
    """
    Build daily cron expressions covering ``run_times``.

    Times sharing a minute collapse into one expression, so 08:00 and
    10:00 become ``"0 8,10 * * *"``.

    Raises:
        ValueError: If ``run_times`` is empty.
    """
    if not run_times:
        raise ValueError("run_times must not be empty")

    hours_by_minute: Dict[int, set] = defaultdict(set)
    for run_time in run_times:
        hours_by_minute[run_time.minute].add(run_time.hour)

    return [
        f"{minute} {','.join(str(hour) for hour in sorted(hours))} * * *"
        for minute, hours in sorted(hours_by_minute.items())
    ]


def next_run_time(
    now: datetime,
    run_times: Sequence[time],
    tz: Union[str, tzinfo],
) -> datetime:
    """
    Find the earliest configured local time strictly after ``now``.

    Args:
        now: Current instant (timezone-aware).
        run_times: Local wall-clock times, in any order.
        tz: Timezone the run times are expressed in.

    Returns:
        datetime: Next run instant, aware in ``tz``.

    Raises:
        ValueError: If ``run_times`` is empty or ``now`` is naive.

    Example:
        >>> tz = ZoneInfo("America/Argentina/Buenos_Aires")
        >>> now = datetime(2025, 3, 1, 9, 0, tzinfo=tz)
        >>> next_run_time(now, [time(8, 0), time(10, 0)], tz).hour
        10
    """
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")

    expressions = cron_expressions(run_times)
    local_now = now.astimezone(resolve_timezone(tz))

    return min(croniter(expression, local_now).get_next(datetime) for expression in expressions)


def seconds_until(now: datetime, target: datetime) -> float:
    """Non-negative elapsed seconds from ``now`` to ``target``, measured in UTC."""
    delta = target.astimezone(timezone.utc) - now.astimezone(timezone.utc)
    return max(delta.total_seconds(), 0.0)
