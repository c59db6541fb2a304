"""
Aggregation of widget events into the numbers and charts shown on the
dashboard and on shared analytics pages.
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Tuple
from zoneinfo import ZoneInfo

PUBLIC_REPORT_DAYS = 14
DASHBOARD_REPORT_DAYS = 7


@dataclass(frozen=True)
class DailyBucket:
    day: date
    views: int = 0
    clicks: int = 0

    @property
    def label(self) -> str:
        return f'{self.day:%b} {self.day.day}'


@dataclass(frozen=True)
class AnalyticsSummary:
    views: int = 0
    clicks: int = 0
    closes: int = 0
    click_rate: int = 0
    close_rate: int = 0
    daily: Tuple[DailyBucket, ...] = field(default_factory=tuple)

    def as_dict(self) -> Dict[str, Any]:
        return {
            'views': self.views,
            'clicks': self.clicks,
            'closes': self.closes,
            'clickRate': self.click_rate,
            'closeRate': self.close_rate,
            'dailyData': [
                {'date': bucket.label, 'views': bucket.views, 'clicks': bucket.clicks}
                for bucket in self.daily
            ],
        }


def percentage(part: int, whole: int) -> int:
    """Whole-number percentage, rounded half up; 0 when ``whole`` is 0."""
    if whole <= 0:
        return 0
    return int(math.floor(100 * part / whole + 0.5))


def click_rate(views: int, clicks: int) -> int:
    return percentage(clicks, views)


def count_event_types(events: Iterable) -> Counter:
    return Counter(event.event_type for event in events)


def _local_day(moment: datetime, zone: ZoneInfo) -> date:
    return moment.astimezone(zone).date()


def aggregate_events(events: Iterable, max_days: int = DASHBOARD_REPORT_DAYS, tz: str = 'UTC') -> AnalyticsSummary:
    """
    Summarise ``events`` into totals and per-day view/click counts.

    Days are calendar days in ``tz``. Buckets are sorted by date before the
    most recent ``max_days`` are kept, so the result does not depend on the
    order the events arrive in.
    """
    zone = ZoneInfo(tz)
    counts: Counter = Counter()
    per_day: Dict[date, Counter] = {}

    for event in events:
        counts[event.event_type] += 1
        if event.created_at is None:
            continue
        bucket = per_day.setdefault(_local_day(event.created_at, zone), Counter())
        if event.event_type in ('view', 'click'):
            bucket[event.event_type] += 1

    daily: List[DailyBucket] = [
        DailyBucket(day=day, views=per_day[day]['view'], clicks=per_day[day]['click'])
        for day in sorted(per_day)
    ]
    daily = daily[-max_days:] if max_days > 0 else []

    views = counts['view']
    clicks = counts['click']
    closes = counts['close']
    return AnalyticsSummary(
        views=views,
        clicks=clicks,
        closes=closes,
        click_rate=click_rate(views, clicks),
        close_rate=percentage(closes, views),
        daily=tuple(daily),
    )
