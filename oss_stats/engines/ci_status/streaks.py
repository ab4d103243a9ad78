"""Failure-streak reconstruction.

Turns a flat list of :class:`CheckEvent` observations into, per job, the set
of calendar days on which that job was broken. A job is broken from the day
of a failing run until the day of the next passing run; if no passing run
follows, it is still broken today. Absence of further runs is not evidence
of recovery.

Everything here is pure: no I/O, no clock reads except the default for
*today*, and the same input always gives the same output.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

import structlog

from oss_stats.core.timeutil import parse_timestamp, to_utc, utcnow
from oss_stats.engines.ci_status.models import CheckEvent, FailureWindow, Outcome

log = structlog.get_logger("oss_stats.engine")


def reconstruct(
    events: Iterable[CheckEvent],
    window_start: date,
    today: date | None = None,
) -> dict[str, FailureWindow]:
    """Reconstruct failure windows for every job seen in *events*.

    Events dated before *window_start* are ignored entirely. Jobs that were
    never broken inside the window are omitted from the result.
    """
    if isinstance(window_start, datetime):
        window_start = to_utc(window_start).date()
    if today is None:
        today = utcnow().date()
    elif isinstance(today, datetime):
        today = to_utc(today).date()

    by_job: dict[str, list[_Observed]] = defaultdict(list)
    for seq, event in enumerate(events):
        at = parse_timestamp(event.timestamp)
        if at is None:
            log.warning(
                "ci.malformed_event",
                job=event.job_key,
                timestamp=repr(event.timestamp),
            )
            continue
        by_job[event.job_key].append(_Observed(at, seq, Outcome.coerce(event.outcome), event))

    windows: dict[str, FailureWindow] = {}
    for job_key, observed in by_job.items():
        window = _walk(job_key, observed, window_start, today)
        if window is not None:
            windows[job_key] = window
    return windows


def chronological(events: Iterable[CheckEvent]) -> list[CheckEvent]:
    """Order events oldest first by full timestamp.

    CI APIs list runs newest first, while :func:`reconstruct` only orders by
    calendar day and keeps input order within a day. Producers' output goes
    through here first so same-day runs are walked in the order they ran.
    Events with unparseable timestamps sort first; :func:`reconstruct` drops
    them anyway.
    """
    return sorted(events, key=_sort_time)


def merge_windows(*mappings: Mapping[str, FailureWindow]) -> dict[str, FailureWindow]:
    """Union several job → window mappings.

    Provider key namespaces are meant to be disjoint, so a key showing up
    twice points at a data problem upstream. It is logged and the later
    mapping wins.
    """
    merged: dict[str, FailureWindow] = {}
    for mapping in mappings:
        for job_key, window in mapping.items():
            if job_key in merged:
                log.warning("ci.duplicate_job_key", job=job_key)
            merged[job_key] = window
    return merged


# ── internal ───────────────────────────────────────────────────────────────


_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


def _sort_time(event: CheckEvent) -> datetime:
    return parse_timestamp(event.timestamp) or _EARLIEST


@dataclass(frozen=True)
class _Observed:
    at: datetime
    seq: int
    outcome: Outcome
    event: CheckEvent


def _walk(
    job_key: str,
    observed: list[_Observed],
    window_start: date,
    today: date,
) -> FailureWindow | None:
    # calendar-day order; same-day events keep input order
    observed.sort(key=lambda o: (o.at.date(), o.seq))

    window: FailureWindow | None = None
    last_failure: date | None = None
    latest: _Observed | None = None
    last_url: str | None = None

    for obs in observed:
        day = obs.at.date()
        if day < window_start:
            continue

        if latest is None or obs.at >= latest.at:
            latest = obs
        if obs.event.url:
            last_url = obs.event.url

        if obs.outcome is Outcome.FAILURE:
            if window is None:
                window = FailureWindow()
            window.dates.add(day)
            last_failure = day
        elif obs.outcome is Outcome.SUCCESS:
            if last_failure is not None and last_failure <= day:
                last_failure = None

    if window is None:
        return None

    if last_failure is not None:
        day = last_failure + timedelta(days=1)
        while day <= today:
            window.dates.add(day)
            day += timedelta(days=1)
        log.debug("ci.failure_marked", job=job_key, since=last_failure.isoformat())

    window.url = last_url
    if latest is not None:
        window.latest_status = latest.event.status or latest.outcome.value
        window.latest_at = latest.at
    return window
