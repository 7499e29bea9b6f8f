"""
Manual payments, bank slips, approvals, receipts and export.
"""
from unittest.mock import AsyncMock, patch

from lms.models.enrollment import BundleRole, Enrollment, EnrollmentPaymentStatus
from lms.models.payment import Payment, PaymentMethod, PaymentStatus
from tests.conftest import headers_for, make_user


async def _bundle(student_user, bundle_classes):
    primary = Enrollment(student_id=str(student_user.id), class_id=str(bundle_classes["theory"].id))
    await primary.insert()
    sibling = Enrollment(
        student_id=str(student_user.id),
        class_id=str(bundle_classes["paper"].id),
        bundle_role=BundleRole.PAPER,
        bundle_parent_id=str(primary.id),
    )
    await sibling.insert()
    return primary, sibling


class TestManualPayments:
    async def test_manual_payment_marks_bundle_paid(self, client, admin_headers, student_user, bundle_classes):
        primary, sibling = await _bundle(student_user, bundle_classes)

        response = await client.post(
            "/api/v1/payments/",
            json={"enrollment_id": str(primary.id), "amount": 5500, "method": "manual", "target_month": "2026-12"},
            headers=admin_headers,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "completed"
        assert body["verified"] is True
        assert set(body["enrollments_updated"]) == {str(primary.id), str(sibling.id)}
        assert (await Enrollment.get(sibling.id)).paid_months == ["2026-12"]

    async def test_payhere_method_stays_pending(self, client, admin_headers, student_user, bundle_classes):
        primary, _ = await _bundle(student_user, bundle_classes)
        response = await client.post(
            "/api/v1/payments/",
            json={"enrollment_id": str(primary.id), "amount": 5500, "method": "payhere"},
            headers=admin_headers,
        )
        assert response.json()["status"] == "pending"
        assert (await Enrollment.get(primary.id)).payment_status == EnrollmentPaymentStatus.UNPAID

    async def test_duplicate_transaction_id(self, client, admin_headers, student_user, bundle_classes):
        primary, _ = await _bundle(student_user, bundle_classes)
        payload = {"enrollment_id": str(primary.id), "amount": 100, "transaction_id": "BANK-1"}
        await client.post("/api/v1/payments/", json=payload, headers=admin_headers)
        response = await client.post("/api/v1/payments/", json=payload, headers=admin_headers)
        assert response.status_code == 409

    async def test_students_cannot_record_manual_payments(self, client, student_headers, student_user, bundle_classes):
        primary, _ = await _bundle(student_user, bundle_classes)
        response = await client.post(
            "/api/v1/payments/",
            json={"enrollment_id": str(primary.id), "amount": 100},
            headers=student_headers,
        )
        assert response.status_code == 403


class TestSlips:
    """Bank transfer slips are pending until approved."""

    async def test_upload_then_approve(self, client, student_user, student_headers, admin_headers, bundle_classes):
        primary, sibling = await _bundle(student_user, bundle_classes)
        uploaded = {
            "url": "https://bucket.s3.amazonaws.com/slips/x.jpg",
            "key": "slips/x.jpg",
            "original_name": "slip.jpg",
            "file_name": "x.jpg",
            "size": 10,
            "mime_type": "image/jpeg",
        }
        with patch("lms.api.payments.upload_file", AsyncMock(return_value=uploaded)):
            response = await client.post(
                "/api/v1/payments/slip",
                data={"enrollment_id": str(primary.id), "amount": "5500", "target_month": "2026-11"},
                files={"file": ("slip.jpg", b"fake-image", "image/jpeg")},
                headers=student_headers,
            )
        assert response.status_code == 201
        slip = response.json()
        assert slip["status"] == "pending"
        assert slip["method"] == PaymentMethod.BANK_TRANSFER.value
        assert (await Enrollment.get(primary.id)).payment_status == EnrollmentPaymentStatus.PENDING

        response = await client.patch(
            f"/api/v1/payments/{slip['id']}/status",
            json={"status": "completed"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert (await Enrollment.get(sibling.id)).payment_status == EnrollmentPaymentStatus.PAID
        assert (await Enrollment.get(primary.id)).paid_months == ["2026-11"]

    async def test_rejecting_slip(self, client, admin_headers, student_user, bundle_classes):
        primary, _ = await _bundle(student_user, bundle_classes)
        payment = Payment(
            enrollment_id=str(primary.id),
            student_id=str(student_user.id),
            amount=100,
            method=PaymentMethod.BANK_TRANSFER,
        )
        await payment.insert()

        response = await client.patch(
            f"/api/v1/payments/{payment.id}/status",
            json={"status": "failed", "notes": "Unreadable slip"},
            headers=admin_headers,
        )

        assert response.json()["status"] == "failed"
        assert (await Enrollment.get(primary.id)).payment_status == EnrollmentPaymentStatus.UNPAID


class TestListingAndReceipts:
    async def _completed(self, student_user, bundle_classes) -> Payment:
        primary, _ = await _bundle(student_user, bundle_classes)
        payment = Payment(
            enrollment_id=str(primary.id),
            student_id=str(student_user.id),
            amount=5500,
            method=PaymentMethod.MANUAL,
            status=PaymentStatus.COMPLETED,
            verified=True,
            target_month="2026-10",
        )
        await payment.insert()
        return payment

    async def test_student_sees_only_own_payments(self, client, student_user, student_headers, bundle_classes):
        await self._completed(student_user, bundle_classes)
        other = await make_user()
        await Payment(enrollment_id="x", student_id=str(other.id), amount=1).insert()

        response = await client.get("/api/v1/payments/", headers=student_headers)

        assert response.status_code == 200
        items = response.json()
        assert len(items) == 1
        assert items[0]["enrollment"]["class"]["name"] == "Theory 2026"

    async def test_receipt_pdf(self, client, student_user, student_headers, bundle_classes):
        payment = await self._completed(student_user, bundle_classes)
        response = await client.get(f"/api/v1/payments/{payment.id}/receipt", headers=student_headers)
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content.startswith(b"%PDF")

    async def test_receipt_needs_completed_payment(self, client, admin_headers, student_user, bundle_classes):
        payment = Payment(enrollment_id="x", student_id=str(student_user.id), amount=1)
        await payment.insert()
        response = await client.get(f"/api/v1/payments/{payment.id}/receipt", headers=admin_headers)
        assert response.status_code == 400

    async def test_csv_export(self, client, admin_user, student_user, bundle_classes):
        await self._completed(student_user, bundle_classes)
        response = await client.get("/api/v1/payments/export", headers=headers_for(admin_user))
        assert response.status_code == 200
        lines = response.text.strip().splitlines()
        assert lines[0].startswith("payment_id,payment_date,student")
        assert len(lines) == 2
        assert "2026-10" in lines[1]
