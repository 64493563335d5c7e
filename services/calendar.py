from datetime import date, timedelta
from decimal import Decimal

from flask import current_app

from models import PublicHoliday


def _is_weekly_off(d: date, mask: int) -> bool:
    return bool(mask & (1 << d.weekday()))


class BusinessCalendar:
    """Counts leave days between two dates, both inclusive.

    ``weekly_off_mask`` has bit N set when weekday N (Mon=0) is off.
    ``holidays`` is a set of dates; when None, official days off are read
    from the PublicHoliday table for the requested range.
    """

    def __init__(self, weekly_off_mask=96, holidays=None):
        self.weekly_off_mask = int(weekly_off_mask)
        self.holidays = set(holidays) if holidays is not None else None

    def _holidays_between(self, start: date, end: date) -> set:
        if self.holidays is not None:
            return self.holidays
        rows = PublicHoliday.query.filter(
            PublicHoliday.day >= start,
            PublicHoliday.day <= end,
            PublicHoliday.is_day_off.is_(True),
        ).all()
        return {r.day for r in rows}

    def is_day_off(self, d: date, holidays=None) -> bool:
        if holidays is None:
            holidays = self._holidays_between(d, d)
        return _is_weekly_off(d, self.weekly_off_mask) or d in holidays

    def count_days(self, start: date, end: date, business_days_only=True) -> Decimal:
        if end < start:
            return Decimal("0")
        if not business_days_only:
            return Decimal((end - start).days + 1)

        holidays = self._holidays_between(start, end)
        n = 0
        cur = start
        while cur <= end:
            if not self.is_day_off(cur, holidays):
                n += 1
            cur += timedelta(days=1)
        return Decimal(n)


def get_calendar() -> BusinessCalendar:
    """Calendar for the running app; tests and deployments may plug their own."""
    cal = current_app.extensions.get("ledger_calendar")
    if cal is None:
        cal = BusinessCalendar(current_app.config.get("LEAVE_WEEKLY_OFF_MASK", 96))
    return cal
