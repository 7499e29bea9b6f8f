"""
PayHere checkout hash, notification signature and the webhook flow.
"""
import hashlib

import pytest

from lms.models.enrollment import BundleRole, Enrollment, EnrollmentPaymentStatus
from lms.models.payment import Payment, PaymentStatus
from lms.services import payhere

SECRET = "test-merchant-secret"


def md5u(value: str) -> str:
    return hashlib.md5(value.encode()).hexdigest().upper()


def signed_notification(order_id: str, amount: str, status_code: str, enrollment_id: str, month: str = "") -> dict:
    fields = {
        "merchant_id": "1211149",
        "order_id": order_id,
        "payment_id": f"3200{order_id[-6:]}",
        "payhere_amount": amount,
        "payhere_currency": "LKR",
        "status_code": status_code,
        "custom_1": enrollment_id,
        "custom_2": month,
    }
    fields["md5sig"] = md5u(
        fields["merchant_id"] + order_id + amount + "LKR" + status_code + md5u(SECRET)
    )
    return fields


class TestHashes:
    def test_format_amount(self):
        assert payhere.format_amount(1500) == "1500.00"
        assert payhere.format_amount("12.345") == "12.35"

    def test_checkout_hash(self):
        expected = md5u("1211149" + "ORDER1" + "1000.00" + "LKR" + md5u(SECRET))
        assert payhere.checkout_hash("ORDER1", 1000, "LKR", "1211149", SECRET) == expected

    def test_verify_notification(self):
        fields = signed_notification("ORDER2", "2500.00", "2", "e1")
        assert payhere.verify_notification(fields, SECRET) is True

    def test_tampered_amount_fails(self):
        fields = signed_notification("ORDER2", "2500.00", "2", "e1")
        fields["payhere_amount"] = "25.00"
        assert payhere.verify_notification(fields, SECRET) is False

    @pytest.mark.parametrize("code, status", [(2, PaymentStatus.COMPLETED), (0, PaymentStatus.PENDING), (-2, PaymentStatus.FAILED), (-3, PaymentStatus.FAILED)])
    def test_status_from_code(self, code, status):
        assert payhere.status_from_code(code) == status

    def test_missing_fields(self):
        assert payhere.missing_notify_fields({"merchant_id": "1"}) == [
            "order_id",
            "payhere_amount",
            "payhere_currency",
            "status_code",
            "md5sig",
        ]


class TestWebhook:
    """Server-to-server notifications from PayHere."""

    async def _bundle(self, student_user, bundle_classes):
        primary = Enrollment(student_id=str(student_user.id), class_id=str(bundle_classes["theory"].id))
        await primary.insert()
        sibling = Enrollment(
            student_id=str(student_user.id),
            class_id=str(bundle_classes["revision"].id),
            bundle_role=BundleRole.REVISION,
            bundle_parent_id=str(primary.id),
        )
        await sibling.insert()
        return primary, sibling

    async def test_successful_payment_cascades(self, client, student_user, bundle_classes):
        primary, sibling = await self._bundle(student_user, bundle_classes)
        fields = signed_notification("ENR-000001", "6000.00", "2", str(primary.id), "2026-10")

        response = await client.post("/api/v1/payments/payhere/webhook", data=fields)

        assert response.status_code == 200
        assert response.text == "OK"
        payment = await Payment.find_one({"payhere_order_id": "ENR-000001"})
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.verified is True
        assert payment.target_month == "2026-10"
        for e in (primary, sibling):
            stored = await Enrollment.get(e.id)
            assert stored.payment_status == EnrollmentPaymentStatus.PAID
            assert stored.paid_months == ["2026-10"]

    async def test_repeated_notification_is_idempotent(self, client, student_user, bundle_classes):
        primary, _ = await self._bundle(student_user, bundle_classes)
        fields = signed_notification("ENR-000002", "6000.00", "2", str(primary.id), "2026-10")

        await client.post("/api/v1/payments/payhere/webhook", data=fields)
        response = await client.post("/api/v1/payments/payhere/webhook", data=fields)

        assert response.status_code == 200
        assert await Payment.find({"payhere_order_id": "ENR-000002"}).count() == 1

    async def test_bad_signature_is_stored_unverified(self, client, student_user, bundle_classes):
        primary, _ = await self._bundle(student_user, bundle_classes)
        fields = signed_notification("ENR-000003", "6000.00", "2", str(primary.id))
        fields["md5sig"] = "0" * 32

        response = await client.post("/api/v1/payments/payhere/webhook", data=fields)

        assert response.status_code == 200
        payment = await Payment.find_one({"payhere_order_id": "ENR-000003"})
        assert payment.verified is False
        assert payment.status != PaymentStatus.COMPLETED
        stored = await Enrollment.get(primary.id)
        assert stored.payment_status == EnrollmentPaymentStatus.UNPAID

    async def test_failed_payment_does_not_grant_access(self, client, student_user, bundle_classes):
        primary, _ = await self._bundle(student_user, bundle_classes)
        fields = signed_notification("ENR-000004", "6000.00", "-2", str(primary.id))

        await client.post("/api/v1/payments/payhere/webhook", data=fields)

        payment = await Payment.find_one({"payhere_order_id": "ENR-000004"})
        assert payment.status == PaymentStatus.FAILED
        assert (await Enrollment.get(primary.id)).payment_status == EnrollmentPaymentStatus.UNPAID

    async def test_missing_fields_rejected(self, client):
        response = await client.post("/api/v1/payments/payhere/webhook", data={"order_id": "x"})
        assert response.status_code == 400

    async def test_unknown_enrollment_rejected(self, client):
        fields = signed_notification("ENR-000005", "100.00", "2", "64b7f0c2a1b2c3d4e5f60718")
        response = await client.post("/api/v1/payments/payhere/webhook", data=fields)
        assert response.status_code == 400


class TestCheckout:
    async def test_checkout_fields(self, client, student_user, student_headers, bundle_classes):
        e = Enrollment(student_id=str(student_user.id), class_id=str(bundle_classes["theory"].id), total_price=6000)
        await e.insert()

        response = await client.post(
            "/api/v1/payments/payhere/checkout",
            json={"enrollment_id": str(e.id), "target_month": "2026-10"},
            headers=student_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["amount"] == "6000.00"
        assert body["custom_1"] == str(e.id)
        assert body["custom_2"] == "2026-10"
        assert body["hash"] == md5u("1211149" + body["order_id"] + "6000.00" + "LKR" + md5u(SECRET))

    async def test_bad_month_rejected(self, client, student_user, student_headers, bundle_classes):
        e = Enrollment(student_id=str(student_user.id), class_id=str(bundle_classes["theory"].id))
        await e.insert()
        response = await client.post(
            "/api/v1/payments/payhere/checkout",
            json={"enrollment_id": str(e.id), "target_month": "10-2026"},
            headers=student_headers,
        )
        assert response.status_code == 400
