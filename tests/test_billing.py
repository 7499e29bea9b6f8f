"""
Unit tests for billing months and the bundle approval cascade.
"""
from datetime import datetime, timedelta

import pytest
from fastapi import HTTPException

from lms.models.enrollment import BundleRole, Enrollment, EnrollmentPaymentStatus
from lms.services.billing import (
    apply_payment,
    end_of_month,
    mark_enrollment_paid,
    parse_month,
    resolve_target_month,
    revoke_enrollment,
)


def _enrollment(**kwargs) -> Enrollment:
    return Enrollment(student_id="s1", class_id=kwargs.pop("class_id", "c1"), **kwargs)


class TestMonths:
    """Month parsing and month-end boundaries."""

    def test_parse_month(self):
        assert parse_month("2026-03") == (2026, 3)

    @pytest.mark.parametrize("value", ["2026-13", "2026-3", "26-03", "", "march"])
    def test_parse_month_rejects_bad_format(self, value):
        with pytest.raises(HTTPException) as exc:
            parse_month(value)
        assert exc.value.status_code == 400

    def test_end_of_month_leap_year(self):
        assert end_of_month(2028, 2) == datetime(2028, 2, 29, 23, 59, 59, 999000)

    def test_end_of_month_december(self):
        assert end_of_month(2026, 12).day == 31


class TestResolveTargetMonth:
    """Explicit month, then access end month, then payment month."""

    def test_explicit_month_wins(self):
        e = _enrollment(access_end_date=datetime(2026, 5, 31))
        assert resolve_target_month(e, "2026-07", datetime(2026, 1, 3)) == "2026-07"

    def test_access_end_month(self):
        e = _enrollment(access_end_date=datetime(2026, 5, 31, 23, 59))
        assert resolve_target_month(e, None, datetime(2026, 1, 3)) == "2026-05"

    def test_payment_month_when_no_access_end(self):
        e = _enrollment(access_end_date=None)
        assert resolve_target_month(e, None, datetime(2026, 9, 14)) == "2026-09"


class TestApplyPayment:
    """Single enrollment state after a payment."""

    def test_marks_paid_and_extends_access(self):
        e = _enrollment(payment_status=EnrollmentPaymentStatus.UNPAID, is_active=False)
        apply_payment(e, "2026-04", payment_id="p1", paid_at=datetime(2026, 4, 2))

        assert e.payment_status == EnrollmentPaymentStatus.PAID
        assert e.is_active is True
        assert e.paid_months == ["2026-04"]
        assert e.access_end_date == end_of_month(2026, 4)
        assert e.next_payment_date == end_of_month(2026, 4) + timedelta(milliseconds=1)
        assert e.last_payment_id == "p1"

    def test_duplicate_month_is_idempotent(self):
        e = _enrollment(paid_months=["2026-04"], access_end_date=end_of_month(2026, 4))
        apply_payment(e, "2026-04")
        assert e.paid_months == ["2026-04"]

    def test_months_stay_sorted(self):
        e = _enrollment(paid_months=["2026-06"])
        apply_payment(e, "2026-02")
        assert e.paid_months == ["2026-02", "2026-06"]

    def test_access_end_never_moves_backwards(self):
        later = end_of_month(2026, 8)
        e = _enrollment(access_end_date=later)
        apply_payment(e, "2026-03")
        assert e.access_end_date == later

    def test_explicit_access_end_overrides_month_end(self):
        e = _enrollment()
        custom = datetime(2026, 12, 15)
        apply_payment(e, "2026-04", access_end_date=custom)
        assert e.access_end_date == custom


class TestRevoke:
    def test_revoke_deactivates(self):
        e = _enrollment(payment_status=EnrollmentPaymentStatus.PAID)
        revoke_enrollment(e, EnrollmentPaymentStatus.EXPIRED)
        assert e.is_active is False
        assert e.payment_status == EnrollmentPaymentStatus.EXPIRED


class TestCascade:
    """Approval of a primary enrollment reaches its bundle siblings."""

    async def _bundle(self):
        primary = _enrollment(class_id="theory")
        await primary.insert()
        revision = _enrollment(
            class_id="revision", bundle_role=BundleRole.REVISION, bundle_parent_id=str(primary.id)
        )
        paper = _enrollment(class_id="paper", bundle_role=BundleRole.PAPER, bundle_parent_id=str(primary.id))
        await revision.insert()
        await paper.insert()
        return primary, revision, paper

    async def test_primary_payment_cascades(self):
        primary, revision, paper = await self._bundle()

        updated = await mark_enrollment_paid(primary, "2026-05", payment_id="pay-1")

        assert {str(e.id) for e in updated} == {str(primary.id), str(revision.id), str(paper.id)}
        for e in (revision, paper):
            stored = await Enrollment.get(e.id)
            assert stored.payment_status == EnrollmentPaymentStatus.PAID
            assert stored.paid_months == ["2026-05"]
            assert stored.access_end_date == end_of_month(2026, 5)
            assert stored.last_payment_id == "pay-1"

    async def test_sibling_payment_does_not_cascade_upward(self):
        primary, revision, _ = await self._bundle()

        updated = await mark_enrollment_paid(revision, "2026-05")

        assert [str(e.id) for e in updated] == [str(revision.id)]
        stored = await Enrollment.get(primary.id)
        assert stored.payment_status == EnrollmentPaymentStatus.UNPAID
        assert stored.paid_months == []

    async def test_unrelated_enrollments_untouched(self):
        primary, _, _ = await self._bundle()
        other = Enrollment(student_id="s2", class_id="theory")
        await other.insert()

        await mark_enrollment_paid(primary, "2026-05")

        stored = await Enrollment.get(other.id)
        assert stored.payment_status == EnrollmentPaymentStatus.UNPAID
