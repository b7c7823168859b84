"""Transaction coverage analysis.

Given the distinct dates on which an account saw activity and the number of
days of silence considered normal for it, work out which stretches of time are
covered and where the gaps are. Gaps are only reported up to ``anchor``
(normally today), and a trailing gap flags data that has gone stale.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Iterable, Optional

ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class Period:
    start: date
    end: date


@dataclass(frozen=True)
class Gap:
    start: date
    end: date
    days: int


@dataclass(frozen=True)
class CoverageReport:
    entity: Any
    first_date: date
    last_date: date
    periods: tuple[Period, ...]
    gaps: tuple[Gap, ...]
    complete: bool
    threshold: int


def merge_periods(periods: Iterable[Period], threshold: int) -> list[Period]:
    """Merge periods that overlap or sit within ``threshold`` days of each other.

    Periods must be sorted by start date.
    """
    merged: list[Period] = []
    for period in periods:
        if not merged:
            merged.append(period)
            continue
        last = merged[-1]
        gap_days = (period.start - last.end).days - 1
        if gap_days <= threshold:
            merged[-1] = Period(last.start, max(last.end, period.end))
        else:
            merged.append(period)
    return merged


def find_gaps(periods: list[Period], threshold: int, anchor: date) -> list[Gap]:
    gaps: list[Gap] = []

    for period_a, period_b in zip(periods, periods[1:]):
        gap_start = period_a.end + ONE_DAY
        gap_end = period_b.start - ONE_DAY
        gap_days = (gap_end - gap_start).days + 1
        # merge_periods already absorbs these
        if gap_days <= threshold:
            continue
        if gap_start > anchor:
            continue
        # days stays the full length even when the end is clamped
        gaps.append(Gap(gap_start, min(gap_end, anchor), gap_days))

    if periods:
        last_end = periods[-1].end
        stale_days = (anchor - last_end).days
        if stale_days > threshold:
            gaps.append(Gap(last_end + ONE_DAY, anchor, stale_days))

    return gaps


def analyze(
    dates: Iterable[date],
    threshold: Optional[int],
    anchor: date,
    *,
    entity: Any = None,
) -> Optional[CoverageReport]:
    """Build a coverage report, or return None when there is nothing to analyze.

    ``threshold`` of None means the entity opted out of tracking. An empty
    date set also yields None. A negative threshold is rejected.
    """
    if threshold is None:
        return None
    if threshold < 0:
        raise ValueError("Coverage threshold cannot be negative")

    unique_dates = sorted(set(dates))
    if not unique_dates:
        return None

    periods = merge_periods((Period(d, d) for d in unique_dates), threshold)
    gaps = find_gaps(periods, threshold, anchor)

    return CoverageReport(
        entity=entity,
        first_date=periods[0].start,
        last_date=periods[-1].end,
        periods=tuple(periods),
        gaps=tuple(gaps),
        complete=not gaps,
        threshold=threshold,
    )
