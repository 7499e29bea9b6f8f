"""Enrollments: bundle quote and signup, admin approval and revocation."""
import logging
from datetime import datetime

from fastapi import APIRouter, HTTPException

from lms import db
from lms.api.deps import AdminOnly, CurrentUser, get_object_or_404
from lms.models.enrollment import (
    Enrollment,
    EnrollmentCreate,
    EnrollmentPaymentStatus,
    EnrollmentQuoteRequest,
    EnrollmentUpdate,
)
from lms.models.lms_class import LmsClass
from lms.models.user import User, UserRole
from lms.services.billing import mark_enrollment_paid, resolve_target_month, revoke_enrollment
from lms.services.enrollments import build_quote, enroll_with_bundle, enrollment_to_dict, expire_lapsed
from lms.services.payments import safe_object_id
from lms.services.sms import get_sms_service

logger = logging.getLogger(__name__)

router = APIRouter()


async def _visible_enrollment(enrollment_id: str, user: User) -> Enrollment:
    enrollment = await get_object_or_404(Enrollment, enrollment_id, "Enrollment")
    if user.role == UserRole.STUDENT and enrollment.student_id != str(user.id):
        raise HTTPException(status_code=404, detail="Enrollment not found")
    if user.role == UserRole.INSTRUCTOR:
        oid = safe_object_id(enrollment.class_id)
        c = await LmsClass.get(oid) if oid else None
        if not c or c.instructor_id != str(user.id):
            raise HTTPException(status_code=404, detail="Enrollment not found")
    await expire_lapsed([enrollment])
    return enrollment


@router.get("/")
async def list_enrollments(
    user: CurrentUser,
    class_id: str | None = None,
    student_id: str | None = None,
    payment_status: EnrollmentPaymentStatus | None = None,
    active_only: bool = False,
):
    query: dict = {}
    if user.role == UserRole.STUDENT:
        query["student_id"] = str(user.id)
    elif student_id:
        query["student_id"] = student_id
    if user.role == UserRole.INSTRUCTOR:
        own = await LmsClass.find({"instructor_id": str(user.id)}).to_list()
        own_ids = [str(c.id) for c in own]
        if class_id and class_id not in own_ids:
            raise HTTPException(status_code=403, detail="Not the instructor of this class")
        query["class_id"] = class_id or {"$in": own_ids}
    elif class_id:
        query["class_id"] = class_id

    enrollments = await Enrollment.find(query).sort("-created_at").to_list()
    await expire_lapsed(enrollments)
    if payment_status:
        enrollments = [e for e in enrollments if e.payment_status == payment_status]
    if active_only:
        enrollments = [e for e in enrollments if e.is_active and not e.is_blocked]
    return [enrollment_to_dict(e) for e in enrollments]


@router.post("/quote")
async def quote_enrollment(data: EnrollmentQuoteRequest, user: CurrentUser):
    quote = await build_quote(data.class_id, data.include_revision, data.include_paper)
    return quote.to_dict()


@router.post("/", status_code=201)
async def create_enrollment(data: EnrollmentCreate, user: CurrentUser):
    if user.role == UserRole.INSTRUCTOR:
        raise HTTPException(status_code=403, detail="Instructors cannot create enrollments")
    if user.role == UserRole.ADMIN and data.student_id:
        student = await get_object_or_404(User, data.student_id, "Student")
        if student.role != UserRole.STUDENT or student.is_deleted:
            raise HTTPException(status_code=400, detail="student_id must reference a student")
    else:
        student = user
    result = await enroll_with_bundle(student, data, sms=get_sms_service())
    return {
        "enrollment": enrollment_to_dict(result.primary),
        "bundle": [enrollment_to_dict(e) for e in result.siblings],
        "total_price": result.quote.total_price,
        "pricing_key": result.quote.pricing_key,
    }


@router.get("/{enrollment_id}")
async def get_enrollment(enrollment_id: str, user: CurrentUser):
    enrollment = await _visible_enrollment(enrollment_id, user)
    data = enrollment_to_dict(enrollment)
    siblings = await Enrollment.find({"bundle_parent_id": str(enrollment.id)}).to_list()
    data["bundle"] = [enrollment_to_dict(e) for e in siblings]
    return data


@router.patch("/{enrollment_id}")
async def update_enrollment(enrollment_id: str, data: EnrollmentUpdate, admin: AdminOnly):
    """Approve (``paid``), revoke (``expired``/``unpaid``) or annotate an enrollment."""
    enrollment = await get_object_or_404(Enrollment, enrollment_id, "Enrollment")
    update_data = data.model_dump(exclude_unset=True)
    updated = [enrollment]

    if data.payment_status == EnrollmentPaymentStatus.PAID:
        if data.access_end_date and not data.target_month:
            month = f"{data.access_end_date.year:04d}-{data.access_end_date.month:02d}"
        else:
            month = resolve_target_month(enrollment, data.target_month)

        async def _approve(session):
            if "notes" in update_data:
                enrollment.notes = data.notes
            if data.is_blocked is not None:
                enrollment.is_blocked = data.is_blocked
            return await mark_enrollment_paid(
                enrollment,
                month,
                access_end_date=data.access_end_date,
                session=session,
            )

        try:
            updated = await db.run_in_transaction(_approve)
        except HTTPException:
            raise
        except Exception:
            logger.exception("Approving enrollment %s failed", enrollment_id)
            raise HTTPException(status_code=500, detail="Enrollment approval failed")
    else:
        if data.payment_status in (EnrollmentPaymentStatus.EXPIRED, EnrollmentPaymentStatus.UNPAID):
            revoke_enrollment(enrollment, data.payment_status)
        elif data.payment_status == EnrollmentPaymentStatus.PENDING:
            enrollment.payment_status = EnrollmentPaymentStatus.PENDING
        if data.access_end_date is not None:
            enrollment.access_end_date = data.access_end_date
        if "notes" in update_data:
            enrollment.notes = data.notes
        if data.is_blocked is not None:
            enrollment.is_blocked = data.is_blocked
        enrollment.updated_at = datetime.utcnow()
        await enrollment.save()

    result = enrollment_to_dict(enrollment)
    result["updated"] = [str(e.id) for e in updated]
    return result


@router.delete("/{enrollment_id}")
async def delete_enrollment(enrollment_id: str, admin: AdminOnly):
    """Remove an enrollment; bundle siblings stay but are detached."""
    enrollment = await get_object_or_404(Enrollment, enrollment_id, "Enrollment")
    await Enrollment.find({"bundle_parent_id": str(enrollment.id)}).update(
        {"$set": {"bundle_parent_id": None}}
    )
    await LmsClass.find({"_id": safe_object_id(enrollment.class_id)}).update(
        {"$pull": {"students": enrollment.student_id}}
    )
    await enrollment.delete()
    return {"id": enrollment_id, "deleted": True}
