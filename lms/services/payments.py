"""Payment confirmation flow shared by PayHere, slips and manual entries."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from beanie import PydanticObjectId
from fastapi import HTTPException

from lms import db
from lms.models.enrollment import Enrollment
from lms.models.lms_class import LmsClass
from lms.models.payment import Payment, PaymentMethod, PaymentStatus
from lms.models.user import User
from lms.services.billing import mark_enrollment_paid, resolve_target_month
from lms.services.email import EmailService, payment_verified_email
from lms.services.sms import SmsService

logger = logging.getLogger(__name__)


def safe_object_id(value: str | None) -> PydanticObjectId | None:
    if not value:
        return None
    try:
        return PydanticObjectId(value)
    except Exception:
        return None


async def get_enrollment_or_404(enrollment_id: str | None) -> Enrollment:
    oid = safe_object_id(enrollment_id)
    enrollment = await Enrollment.get(oid) if oid else None
    if not enrollment:
        raise HTTPException(status_code=404, detail="Enrollment not found")
    return enrollment


async def confirm_payment(payment: Payment, enrollment: Enrollment) -> list[Enrollment]:
    """Persist ``payment`` as completed and cascade the approval in one transaction.

    Works for new (uninserted) and existing payments. Returns the enrollments
    marked paid.
    """
    month = resolve_target_month(enrollment, payment.target_month, payment.payment_date)

    async def _approve(session):
        payment.target_month = month
        payment.status = PaymentStatus.COMPLETED
        payment.verified = True
        payment.student_id = payment.student_id or enrollment.student_id
        payment.updated_at = datetime.utcnow()
        if payment.id is None:
            await payment.insert(session=session)
        else:
            await payment.save(session=session)
        return await mark_enrollment_paid(
            enrollment,
            month,
            payment_id=str(payment.id),
            paid_at=payment.payment_date,
            session=session,
        )

    return await db.run_in_transaction(_approve)


async def payment_parties(enrollment: Enrollment) -> tuple[Optional[User], Optional[LmsClass]]:
    student_oid = safe_object_id(enrollment.student_id)
    class_oid = safe_object_id(enrollment.class_id)
    student = await User.get(student_oid) if student_oid else None
    lms_class = await LmsClass.get(class_oid) if class_oid else None
    return student, lms_class


async def notify_payment_confirmed(
    payment: Payment,
    enrollment: Enrollment,
    sms: SmsService,
    email: Optional[EmailService] = None,
) -> None:
    """Best-effort student notifications after a payment is confirmed."""
    student, lms_class = await payment_parties(enrollment)
    if not student:
        return
    class_name = lms_class.name if lms_class else "your class"
    if payment.method == PaymentMethod.PAYHERE:
        message = sms.payment_receipt(payment.amount, class_name, payment.payhere_payment_id or str(payment.id))
    else:
        message = sms.payment_verified(payment.amount, class_name)
    await sms.send_quietly(student.phone, message)
    if email is not None:
        subject, html = payment_verified_email(student.full_name, payment.amount, class_name, payment.target_month or "")
        await email.send_quietly(student.email, subject, html)


async def notify_admin_of_slip(payment: Payment, enrollment: Enrollment, sms: SmsService, admin_phone: str) -> None:
    if not admin_phone:
        return
    student, lms_class = await payment_parties(enrollment)
    await sms.send_quietly(
        admin_phone,
        sms.admin_payment_alert(
            student.full_name if student else "A student",
            payment.amount,
            lms_class.name if lms_class else "a class",
            str(payment.id),
        ),
    )


def payment_to_dict(
    payment: Payment,
    enrollment: Optional[Enrollment] = None,
    student: Optional[User] = None,
    lms_class: Optional[LmsClass] = None,
) -> dict:
    data = payment.model_dump(mode="json", exclude={"id", "revision_id", "raw_payload"})
    data["id"] = str(payment.id)
    if enrollment is not None:
        data["enrollment"] = {
            "id": str(enrollment.id),
            "payment_status": enrollment.payment_status.value,
            "bundle_role": enrollment.bundle_role.value,
            "student": {"id": str(student.id), "name": student.full_name, "email": student.email} if student else None,
            "class": {"id": str(lms_class.id), "name": lms_class.name} if lms_class else None,
        }
    return data
