"""Billing months and payment approval cascade across bundle enrollments."""
from __future__ import annotations

import calendar
import logging
import re
from datetime import datetime, timedelta
from typing import Any, Optional

from fastapi import HTTPException

from lms.models.enrollment import BundleRole, Enrollment, EnrollmentPaymentStatus

logger = logging.getLogger(__name__)

_MONTH_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def month_key(value: datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def parse_month(value: str) -> tuple[int, int]:
    match = _MONTH_RE.match((value or "").strip())
    if not match:
        raise HTTPException(status_code=400, detail="target_month must be in YYYY-MM format")
    return int(match.group(1)), int(match.group(2))


def end_of_month(year: int, month: int) -> datetime:
    last_day = calendar.monthrange(year, month)[1]
    return datetime(year, month, last_day, 23, 59, 59, 999000)


def end_of_current_month(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.utcnow()
    return end_of_month(now.year, now.month)


def resolve_target_month(
    enrollment: Enrollment,
    target_month: Optional[str] = None,
    payment_date: Optional[datetime] = None,
) -> str:
    """Month a payment settles.

    Explicit ``target_month`` from the payment initiator wins, then the month
    of the enrollment's access end, then the month of the payment itself.
    """
    if target_month:
        year, month = parse_month(target_month)
        return f"{year:04d}-{month:02d}"
    if enrollment.access_end_date:
        return month_key(enrollment.access_end_date)
    return month_key(payment_date or datetime.utcnow())


def apply_payment(
    enrollment: Enrollment,
    month: str,
    payment_id: Optional[str] = None,
    paid_at: Optional[datetime] = None,
    access_end_date: Optional[datetime] = None,
) -> None:
    """Mark a single enrollment paid for ``month``. Access end only ever moves forward."""
    paid_at = paid_at or datetime.utcnow()
    year, mon = parse_month(month)
    new_end = access_end_date or end_of_month(year, mon)

    enrollment.payment_status = EnrollmentPaymentStatus.PAID
    enrollment.is_active = True
    enrollment.last_payment_date = paid_at
    if payment_id:
        enrollment.last_payment_id = payment_id
    if month not in enrollment.paid_months:
        enrollment.paid_months = sorted([*enrollment.paid_months, month])
    if enrollment.access_end_date is None or new_end > enrollment.access_end_date:
        enrollment.access_end_date = new_end
    enrollment.next_payment_date = enrollment.access_end_date + timedelta(milliseconds=1)
    enrollment.updated_at = datetime.utcnow()


async def mark_enrollment_paid(
    enrollment: Enrollment,
    month: str,
    payment_id: Optional[str] = None,
    paid_at: Optional[datetime] = None,
    access_end_date: Optional[datetime] = None,
    session: Any = None,
) -> list[Enrollment]:
    """Approve ``enrollment`` for ``month`` and cascade to its bundle siblings.

    Siblings are only reached from the primary enrollment; a payment against a
    sibling marks that sibling alone. Returns every enrollment updated.
    """
    apply_payment(enrollment, month, payment_id, paid_at, access_end_date)
    await enrollment.save(session=session)
    updated = [enrollment]

    if enrollment.bundle_role != BundleRole.PRIMARY or enrollment.bundle_parent_id:
        return updated

    siblings = await Enrollment.find(
        {"bundle_parent_id": str(enrollment.id)}, session=session
    ).to_list()
    for sibling in siblings:
        apply_payment(sibling, month, payment_id, paid_at, access_end_date)
        await sibling.save(session=session)
        updated.append(sibling)
    if siblings:
        logger.info(
            "Payment for %s cascaded to %d bundle enrollment(s) for %s",
            enrollment.id,
            len(siblings),
            month,
        )
    return updated


def revoke_enrollment(enrollment: Enrollment, status: EnrollmentPaymentStatus) -> None:
    enrollment.payment_status = status
    enrollment.is_active = False
    enrollment.updated_at = datetime.utcnow()
