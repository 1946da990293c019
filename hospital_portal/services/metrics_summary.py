"""
Monthly metrics summary.

Aggregates department-level daily metric rows into month totals, a per-day
trend and a per-department ranking, plus the previous month's totals for
month-over-month comparison.
"""

import calendar
import re
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, NamedTuple, Optional

MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")

SUMMED_FIELDS = (
    "revenue_total",
    "monthly_input_count",
    "census_total",
    "census_opd",
    "census_er",
)
UNKNOWN_DEPARTMENT = "Unknown Department"


class MonthRange(NamedTuple):
    month: str
    start: str
    end: str
    prev_start: str
    prev_end: str


def _last_day(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def month_range(month: Optional[str], today: Optional[date] = None) -> MonthRange:
    """
    Resolve a ``YYYY-MM`` value into the month's first/last day and the
    previous month's first/last day. Missing or invalid values mean the
    current UTC month.
    """
    today = today or datetime.now(timezone.utc).date()
    year, month_number = today.year, today.month

    match = MONTH_PATTERN.match(month or "")
    if match and 1 <= int(match.group(2)) <= 12:
        year, month_number = int(match.group(1)), int(match.group(2))

    start = date(year, month_number, 1)
    end = _last_day(year, month_number)
    prev_year, prev_month = (year - 1, 12) if month_number == 1 else (year, month_number - 1)

    return MonthRange(
        month=f"{year:04d}-{month_number:02d}",
        start=start.isoformat(),
        end=end.isoformat(),
        prev_start=date(prev_year, prev_month, 1).isoformat(),
        prev_end=_last_day(prev_year, prev_month).isoformat(),
    )


class _Bucket:
    """Running sums for one group of rows."""

    def __init__(self):
        self.sums = {field: 0 for field in SUMMED_FIELDS}
        self.equipment_sum = 0.0
        self.count = 0

    def add(self, row: dict) -> None:
        self.sums["revenue_total"] += float(row.get("revenue_total") or 0)
        for field in SUMMED_FIELDS[1:]:
            self.sums[field] += int(row.get(field) or 0)
        self.equipment_sum += float(row.get("equipment_utilization_pct") or 0)
        self.count += 1

    def equipment_average(self) -> float:
        return self.equipment_sum / self.count if self.count else 0

    def as_dict(self) -> dict:
        result = dict(self.sums)
        result["equipment_utilization_pct"] = self.equipment_average()
        return result


def summarize_metrics(rows: Iterable[dict], departments: Iterable[dict]) -> dict:
    """
    Build totals, daily_trend, department_performance and
    best_performing_department from the current month's rows.
    """
    names = {department["id"]: department.get("name") for department in departments}
    totals = _Bucket()
    daily: Dict[str, _Bucket] = {}
    per_department: Dict[str, _Bucket] = {}

    for row in rows:
        totals.add(row)
        daily.setdefault(row["metric_date"], _Bucket()).add(row)
        per_department.setdefault(row["department_id"], _Bucket()).add(row)

    daily_trend = [
        {"date": day, **daily[day].as_dict()}
        for day in sorted(daily)
    ]

    performance: List[dict] = [
        {
            "department_id": department_id,
            "department_name": names.get(department_id) or UNKNOWN_DEPARTMENT,
            **bucket.as_dict(),
        }
        for department_id, bucket in per_department.items()
    ]
    performance.sort(key=lambda item: item["revenue_total"], reverse=True)

    return {
        "totals": totals.as_dict(),
        "best_performing_department": performance[0] if performance else None,
        "daily_trend": daily_trend,
        "department_performance": performance,
    }


def summarize_previous(rows: Iterable[dict]) -> dict:
    bucket = _Bucket()
    for row in rows:
        bucket.add(row)
    return {
        "revenue_total": bucket.sums["revenue_total"],
        "monthly_input_count": bucket.sums["monthly_input_count"],
        "census_total": bucket.sums["census_total"],
        "equipment_utilization_pct": bucket.equipment_average(),
    }


def summarize_transactions(rows: Iterable[dict]) -> dict:
    """Per-category and per-day totals of transaction category counts."""
    category_totals: Dict[str, int] = {}
    daily_totals: Dict[str, int] = {}
    for row in rows:
        count = int(row.get("count") or 0)
        category_totals[row["category"]] = category_totals.get(row["category"], 0) + count
        daily_totals[row["metric_date"]] = daily_totals.get(row["metric_date"], 0) + count

    return {
        "category_totals": category_totals,
        "daily_totals": [{"date": day, "total": total} for day, total in sorted(daily_totals.items())],
        "grand_total": sum(category_totals.values()),
    }
