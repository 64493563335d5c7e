import logging
import os
import sys
from decimal import Decimal

# project root on PYTHONPATH when run as a script
BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

from models import LeaveEntitlement, Staff, as_decimal  # noqa: E402
from services.leave_ledger import allocate_entitlement  # noqa: E402
from services.result import call  # noqa: E402

logger = logging.getLogger(__name__)


def carry_forward_days(ent) -> Decimal:
    """Days that move into next year: unused balance, capped by the annual cap."""
    category = ent.category
    if not category.can_carry_forward:
        return Decimal("0")
    days = max(ent.remaining_days, Decimal("0"))
    if category.max_days_per_year:
        days = min(days, as_decimal(category.max_days_per_year))
    return days


def roll_over(from_year, actor_id=None):
    """Open ``from_year + 1`` entitlements for active staff.

    Rows that already exist are left alone. Returns the created entitlements.
    """
    to_year = int(from_year) + 1
    source = (
        LeaveEntitlement.query
        .join(Staff, Staff.id == LeaveEntitlement.staff_id)
        .filter(LeaveEntitlement.year == int(from_year), Staff.employment_status == "active")
        .order_by(LeaveEntitlement.staff_id.asc(), LeaveEntitlement.category_id.asc())
        .all()
    )

    plans = [
        (ent.staff_id, ent.category_id, ent.allocated_days, carry_forward_days(ent))
        for ent in source
        if ent.category.is_active
    ]

    created = []
    for staff_id, category_id, allocated, carried in plans:
        result = call(
            allocate_entitlement,
            staff_id,
            category_id,
            to_year,
            allocated_days=allocated,
            carried_forward_days=carried,
            actor_id=actor_id,
        )
        if result.ok:
            created.append(result.value)
        elif result.error_code == "DuplicateEntitlement":
            logger.info("Entitlement exists staff_id=%s category=%s year=%s", staff_id, category_id, to_year)
        else:
            logger.error(
                "Rollover failed staff_id=%s category=%s year=%s: %s %s",
                staff_id, category_id, to_year, result.error_code, result.message,
            )

    logger.info("Year rollover %s -> %s created %s entitlement(s)", from_year, to_year, len(created))
    return created


if __name__ == "__main__":
    from app import app

    year = int(sys.argv[1]) if len(sys.argv) > 1 else None
    if year is None:
        print("usage: python jobs/year_rollover.py FROM_YEAR")
        sys.exit(2)

    with app.app_context():
        roll_over(year)
