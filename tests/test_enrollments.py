"""
Bundle enrollment: pricing, transactional signup and lazy expiry.
"""
from datetime import datetime, timedelta

import httpx
import pytest
from fastapi import HTTPException

from lms.models.enrollment import BundleRole, Enrollment, EnrollmentCreate, EnrollmentPaymentStatus
from lms.models.lms_class import BundlePricing, LmsClass
from lms.services.enrollments import (
    active_enrollment,
    build_quote,
    bundle_pricing_key,
    enroll_with_bundle,
    expire_lapsed,
    resolve_bundle_price,
)
from lms.services.sms import SmsService
from tests.conftest import headers_for, make_class


class TestPricing:
    """Bundle pricing keys and price resolution."""

    @pytest.mark.parametrize(
        "revision, paper, key",
        [
            (False, False, "theory_only"),
            (True, False, "theory_revision"),
            (False, True, "theory_paper"),
            (True, True, "full"),
        ],
    )
    def test_pricing_key(self, revision, paper, key):
        assert bundle_pricing_key(revision, paper) == key

    def test_explicit_bundle_price_wins(self):
        primary = LmsClass(name="T", slug="t", price=4000, bundle_pricing=BundlePricing(full=6500))
        siblings = [LmsClass(name="R", slug="r", price=2000), LmsClass(name="P", slug="p", price=1500)]
        assert resolve_bundle_price(primary, siblings, "full") == 6500

    def test_falls_back_to_component_sum(self):
        primary = LmsClass(name="T", slug="t", price=4000, bundle_pricing=BundlePricing(full=6500))
        siblings = [LmsClass(name="R", slug="r", price=2000)]
        assert resolve_bundle_price(primary, siblings, "theory_revision") == 6000


class TestQuote:
    async def test_full_bundle(self, bundle_classes):
        quote = await build_quote(str(bundle_classes["theory"].id), True, True)
        assert quote.pricing_key == "full"
        assert quote.total_price == 7500
        assert [m["role"] for m in quote.to_dict()["members"]] == ["primary", "revision", "paper"]

    async def test_flag_without_link_is_ignored(self):
        lonely = await make_class("Lonely", price=1000)
        quote = await build_quote(str(lonely.id), True, True)
        assert quote.pricing_key == "theory_only"
        assert quote.total_price == 1000

    async def test_missing_linked_class_is_404(self):
        theory = await make_class("Broken link", revision_class_id="64b7f0c2a1b2c3d4e5f60718")
        with pytest.raises(HTTPException) as exc:
            await build_quote(str(theory.id), True, False)
        assert exc.value.status_code == 404


class TestEnrollWithBundle:
    """Primary and sibling enrollments are created together."""

    async def test_creates_primary_and_siblings(self, student_user, bundle_classes):
        data = EnrollmentCreate(class_id=str(bundle_classes["theory"].id), include_revision=True, include_paper=True)

        result = await enroll_with_bundle(student_user, data)

        assert result.primary.bundle_role == BundleRole.PRIMARY
        assert result.primary.total_price == 7500
        assert len(result.siblings) == 2
        for sibling in result.siblings:
            assert sibling.bundle_parent_id == str(result.primary.id)
        theory = await LmsClass.get(bundle_classes["theory"].id)
        assert str(student_user.id) in theory.students

    async def test_existing_sibling_is_linked_not_duplicated(self, student_user, bundle_classes):
        existing = Enrollment(student_id=str(student_user.id), class_id=str(bundle_classes["revision"].id))
        await existing.insert()
        data = EnrollmentCreate(class_id=str(bundle_classes["theory"].id), include_revision=True)

        result = await enroll_with_bundle(student_user, data)

        assert [str(s.id) for s in result.siblings] == [str(existing.id)]
        assert len(result.created) == 1
        linked = await Enrollment.get(existing.id)
        assert linked.bundle_parent_id == str(result.primary.id)
        assert linked.bundle_role == BundleRole.REVISION

    async def test_duplicate_primary_is_conflict(self, student_user, bundle_classes):
        data = EnrollmentCreate(class_id=str(bundle_classes["theory"].id))
        await enroll_with_bundle(student_user, data)

        with pytest.raises(HTTPException) as exc:
            await enroll_with_bundle(student_user, data)
        assert exc.value.status_code == 409

    async def test_missing_linked_class_creates_nothing(self, student_user):
        theory = await make_class("Dangling", paper_class_id="64b7f0c2a1b2c3d4e5f60718")
        data = EnrollmentCreate(class_id=str(theory.id), include_paper=True)

        with pytest.raises(HTTPException) as exc:
            await enroll_with_bundle(student_user, data)

        assert exc.value.status_code == 404
        assert await Enrollment.find({"student_id": str(student_user.id)}).count() == 0


def _sms(handler) -> SmsService:
    sms = SmsService(transport=httpx.MockTransport(handler))
    sms.driver, sms.api_key, sms.sender_id = "textlk", "sms-key", "SLACC"
    return sms


class TestEnrollmentSms:
    """Confirmations go out after commit, one per new enrollment."""

    async def test_one_message_per_created_enrollment(self, student_user, bundle_classes):
        existing = Enrollment(student_id=str(student_user.id), class_id=str(bundle_classes["paper"].id))
        await existing.insert()
        messages = []

        def handler(request: httpx.Request) -> httpx.Response:
            messages.append(request.content)
            return httpx.Response(200, json={"status": "success"})

        data = EnrollmentCreate(class_id=str(bundle_classes["theory"].id), include_revision=True, include_paper=True)
        result = await enroll_with_bundle(student_user, data, sms=_sms(handler))

        assert len(result.created) == 2
        assert len(messages) == len(result.created)

    async def test_failing_sms_never_surfaces(self, student_user, bundle_classes):
        sms = _sms(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
        data = EnrollmentCreate(class_id=str(bundle_classes["theory"].id), include_revision=True)

        result = await enroll_with_bundle(student_user, data, sms=sms)

        assert len(result.created) == 2
        assert await Enrollment.find({"student_id": str(student_user.id)}).count() == 2

    async def test_no_message_when_enrollment_fails(self, student_user, bundle_classes):
        messages = []
        sms = _sms(lambda request: messages.append(request) or httpx.Response(200, json={"status": "success"}))
        data = EnrollmentCreate(class_id=str(bundle_classes["theory"].id))
        await enroll_with_bundle(student_user, data)

        with pytest.raises(HTTPException):
            await enroll_with_bundle(student_user, data, sms=sms)
        assert messages == []


class TestLazyExpiry:
    async def test_lapsed_enrollment_is_expired_on_read(self, student_user):
        lms_class = await make_class()
        e = Enrollment(
            student_id=str(student_user.id),
            class_id=str(lms_class.id),
            payment_status=EnrollmentPaymentStatus.PAID,
            access_end_date=datetime.utcnow() - timedelta(days=1),
        )
        await e.insert()

        assert await active_enrollment(str(student_user.id), str(lms_class.id)) is None
        stored = await Enrollment.get(e.id)
        assert stored.payment_status == EnrollmentPaymentStatus.EXPIRED
        assert stored.is_active is False

    async def test_open_ended_enrollment_stays_active(self):
        e = Enrollment(student_id="s", class_id="c", access_end_date=None)
        await expire_lapsed([e], now=datetime.utcnow())
        assert e.is_active is True


class TestEnrollmentApi:
    async def test_student_enrolls_and_admin_approves(self, client, student_user, student_headers, admin_headers, bundle_classes):
        response = await client.post(
            "/api/v1/enrollments/",
            json={"class_id": str(bundle_classes["theory"].id), "include_revision": True},
            headers=student_headers,
        )
        assert response.status_code == 201
        body = response.json()
        assert body["pricing_key"] == "theory_revision"
        enrollment_id = body["enrollment"]["id"]

        response = await client.patch(
            f"/api/v1/enrollments/{enrollment_id}",
            json={"payment_status": "paid", "target_month": "2026-11"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert len(response.json()["updated"]) == 2
        for e in await Enrollment.find({"student_id": str(student_user.id)}).to_list():
            assert e.payment_status == EnrollmentPaymentStatus.PAID
            assert "2026-11" in e.paid_months

    async def test_student_cannot_see_others_enrollment(self, client, student_headers, bundle_classes):
        e = Enrollment(student_id="someone-else", class_id=str(bundle_classes["paper"].id))
        await e.insert()
        response = await client.get(f"/api/v1/enrollments/{e.id}", headers=student_headers)
        assert response.status_code == 404

    async def test_quote_endpoint(self, client, student_headers, bundle_classes):
        response = await client.post(
            "/api/v1/enrollments/quote",
            json={"class_id": str(bundle_classes["theory"].id), "include_paper": True},
            headers=student_headers,
        )
        assert response.status_code == 200
        assert response.json()["total_price"] == 5500

    async def test_requires_auth(self, client, bundle_classes):
        response = await client.get("/api/v1/enrollments/")
        assert response.status_code in (401, 403)

    async def test_admin_lists_by_class(self, client, admin_user, student_user, bundle_classes):
        await Enrollment(student_id=str(student_user.id), class_id=str(bundle_classes["paper"].id)).insert()
        response = await client.get(
            "/api/v1/enrollments/",
            params={"class_id": str(bundle_classes["paper"].id)},
            headers=headers_for(admin_user),
        )
        assert response.status_code == 200
        assert len(response.json()) == 1

    async def test_approve_with_offset_aware_access_end(self, client, student_user, admin_headers, bundle_classes):
        e = Enrollment(student_id=str(student_user.id), class_id=str(bundle_classes["paper"].id))
        await e.insert()

        # 03:00 on 1 April in Colombo is still 31 March in UTC
        response = await client.patch(
            f"/api/v1/enrollments/{e.id}",
            json={"payment_status": "paid", "access_end_date": "2031-04-01T03:00:00+05:30"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        stored = await Enrollment.get(e.id)
        assert stored.paid_months == ["2031-03"]
        assert stored.access_end_date == datetime(2031, 3, 31, 21, 30)
