"""Payments: PayHere checkout and webhook, bank slips, manual entries, receipts."""
import logging
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import PlainTextResponse, Response

from lms.api.deps import AdminOnly, CurrentUser, get_object_or_404
from lms.config import settings
from lms.models.enrollment import Enrollment, EnrollmentPaymentStatus
from lms.models.lms_class import LmsClass
from lms.models.payment import (
    CheckoutRequest,
    ManualPaymentCreate,
    Payment,
    PaymentMethod,
    PaymentStatus,
    PaymentStatusUpdate,
)
from lms.models.user import User, UserRole
from lms.services import payhere, reports
from lms.services.billing import parse_month
from lms.services.email import get_email_service
from lms.services.payments import (
    confirm_payment,
    get_enrollment_or_404,
    notify_admin_of_slip,
    notify_payment_confirmed,
    payment_parties,
    payment_to_dict,
    safe_object_id,
)
from lms.services.receipt import generate_receipt_pdf_bytes
from lms.services.s3 import upload_file
from lms.services.sms import get_sms_service

logger = logging.getLogger(__name__)

router = APIRouter()
public_router = APIRouter()

LIST_LIMIT = 200


async def _own_enrollment(enrollment_id: str, user: User) -> Enrollment:
    enrollment = await get_enrollment_or_404(enrollment_id)
    if user.role == UserRole.STUDENT and enrollment.student_id != str(user.id):
        raise HTTPException(status_code=404, detail="Enrollment not found")
    return enrollment


async def _populate(payments: list[Payment]) -> list[dict]:
    enrollment_ids = {oid for oid in (safe_object_id(p.enrollment_id) for p in payments) if oid}
    enrollments = {
        str(e.id): e for e in await Enrollment.find({"_id": {"$in": list(enrollment_ids)}}).to_list()
    } if enrollment_ids else {}
    user_ids = {oid for oid in (safe_object_id(e.student_id) for e in enrollments.values()) if oid}
    class_ids = {oid for oid in (safe_object_id(e.class_id) for e in enrollments.values()) if oid}
    users = {str(u.id): u for u in await User.find({"_id": {"$in": list(user_ids)}}).to_list()} if user_ids else {}
    classes = {
        str(c.id): c for c in await LmsClass.find({"_id": {"$in": list(class_ids)}}).to_list()
    } if class_ids else {}

    result = []
    for p in payments:
        e = enrollments.get(p.enrollment_id)
        result.append(
            payment_to_dict(
                p,
                enrollment=e,
                student=users.get(e.student_id) if e else None,
                lms_class=classes.get(e.class_id) if e else None,
            )
        )
    return result


# ============== PayHere ==============


@router.post("/payhere/checkout")
async def payhere_checkout(data: CheckoutRequest, user: CurrentUser):
    """Signed fields for the PayHere checkout form."""
    if not settings.payhere_merchant_id or not settings.payhere_merchant_secret:
        raise HTTPException(status_code=503, detail="PayHere is not configured")
    enrollment = await _own_enrollment(data.enrollment_id, user)
    if data.target_month:
        parse_month(data.target_month)
    student, lms_class = await payment_parties(enrollment)
    amount = data.amount or enrollment.total_price or (lms_class.price if lms_class else 0)
    if not amount:
        raise HTTPException(status_code=400, detail="Amount could not be determined")

    order_id = f"ENR{str(enrollment.id)[-6:]}-{uuid.uuid4().hex[:10]}"
    currency = settings.payhere_currency
    return {
        "action_url": payhere.checkout_url(),
        "merchant_id": settings.payhere_merchant_id,
        "return_url": settings.payhere_return_url,
        "cancel_url": settings.payhere_cancel_url,
        "notify_url": settings.payhere_notify_url,
        "order_id": order_id,
        "items": lms_class.name if lms_class else "Class fee",
        "currency": currency,
        "amount": payhere.format_amount(amount),
        "first_name": student.first_name if student else "",
        "last_name": student.last_name if student else "",
        "email": student.email if student else "",
        "phone": (student.phone or "") if student else "",
        "custom_1": str(enrollment.id),
        "custom_2": data.target_month or "",
        "hash": payhere.checkout_hash(order_id, amount, currency),
    }


@public_router.post("/payhere/webhook", response_class=PlainTextResponse)
async def payhere_webhook(request: Request):
    """PayHere server-to-server notification (form encoded, unauthenticated)."""
    form = await request.form()
    fields = {k: str(v) for k, v in form.items()}
    missing = payhere.missing_notify_fields(fields)
    if missing or not fields.get("custom_1"):
        logger.warning("PayHere notification missing fields: %s", missing or ["custom_1"])
        return PlainTextResponse("Missing fields", status_code=400)

    try:
        verified = payhere.verify_notification(fields)
        if not verified:
            logger.warning("PayHere signature mismatch for order %s", fields["order_id"])
        enrollment_oid = safe_object_id(fields["custom_1"])
        enrollment = await Enrollment.get(enrollment_oid) if enrollment_oid else None
        if not enrollment:
            logger.error("PayHere order %s references unknown enrollment %s", fields["order_id"], fields["custom_1"])
            return PlainTextResponse("Unknown enrollment", status_code=400)

        payment = await Payment.find_one({"payhere_order_id": fields["order_id"]})
        already_completed = bool(payment and payment.status == PaymentStatus.COMPLETED and payment.verified)
        if payment is None:
            payment = Payment(
                enrollment_id=str(enrollment.id),
                student_id=enrollment.student_id,
                amount=float(fields["payhere_amount"]),
                method=PaymentMethod.PAYHERE,
                payhere_order_id=fields["order_id"],
            )
        status_code = int(fields["status_code"])
        payment.amount = float(fields["payhere_amount"])
        payment.currency = fields["payhere_currency"]
        payment.payhere_payment_id = fields.get("payment_id") or payment.payhere_payment_id
        payment.payhere_status_code = status_code
        payment.payhere_md5sig = fields["md5sig"]
        payment.transaction_id = fields.get("payment_id") or payment.transaction_id
        payment.raw_payload = fields
        payment.target_month = fields.get("custom_2") or payment.target_month
        payment.updated_at = datetime.utcnow()

        status = payhere.status_from_code(status_code)
        if already_completed:
            await payment.save()
        elif verified and status == PaymentStatus.COMPLETED:
            await confirm_payment(payment, enrollment)
            await notify_payment_confirmed(payment, enrollment, get_sms_service(), get_email_service())
        else:
            # signature mismatches wait for manual review
            payment.status = status if verified else PaymentStatus.PENDING
            payment.verified = verified
            if status == PaymentStatus.PENDING and enrollment.payment_status != EnrollmentPaymentStatus.PAID:
                enrollment.payment_status = EnrollmentPaymentStatus.PENDING
                await enrollment.save()
            if payment.id is None:
                await payment.insert()
            else:
                await payment.save()
    except HTTPException as e:
        logger.error("PayHere notification %s rejected: %s", fields.get("order_id"), e.detail)
        return PlainTextResponse(str(e.detail), status_code=e.status_code)
    except Exception:
        logger.exception("PayHere notification %s failed", fields.get("order_id"))
        return PlainTextResponse("Error", status_code=500)
    return PlainTextResponse("OK")


# ============== Admin and student payments ==============


@router.get("/")
async def list_payments(
    user: CurrentUser,
    enrollment_id: Optional[str] = None,
    status: Optional[PaymentStatus] = None,
    method: Optional[PaymentMethod] = None,
    target_month: Optional[str] = None,
):
    query: dict = {}
    if user.role == UserRole.STUDENT:
        query["student_id"] = str(user.id)
    elif user.role != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    if enrollment_id:
        query["enrollment_id"] = enrollment_id
    if status:
        query["status"] = status.value
    if method:
        query["method"] = method.value
    if target_month:
        query["target_month"] = target_month
    payments = await Payment.find(query).sort("-payment_date").limit(LIST_LIMIT).to_list()
    return await _populate(payments)


@router.get("/export")
async def export_payments(
    admin: AdminOnly,
    status: Optional[PaymentStatus] = None,
    target_month: Optional[str] = None,
):
    query: dict = {}
    if status:
        query["status"] = status.value
    if target_month:
        query["target_month"] = target_month
    payments = await Payment.find(query).sort("-payment_date").to_list()
    rows = []
    for item in await _populate(payments):
        enrollment = item.get("enrollment") or {}
        student = enrollment.get("student") or {}
        rows.append(
            {
                "payment_id": item["id"],
                "payment_date": item["payment_date"],
                "student": student.get("name", ""),
                "email": student.get("email", ""),
                "class": (enrollment.get("class") or {}).get("name", ""),
                "target_month": item.get("target_month"),
                "amount": item["amount"],
                "currency": item["currency"],
                "method": item["method"],
                "status": item["status"],
                "verified": item["verified"],
                "reference": item.get("payhere_payment_id") or item.get("transaction_id") or "",
            }
        )
    frame = reports.payments_frame(rows)
    return Response(
        content=reports.to_csv_bytes(frame),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="payments.csv"'},
    )


@router.post("/", status_code=201)
async def create_manual_payment(data: ManualPaymentCreate, admin: AdminOnly):
    """Admin-recorded payment. Anything but a PayHere method is verified on entry."""
    enrollment = await get_enrollment_or_404(data.enrollment_id)
    if data.target_month:
        parse_month(data.target_month)
    if data.transaction_id and await Payment.find_one({"transaction_id": data.transaction_id}):
        raise HTTPException(status_code=409, detail="Transaction id already recorded")
    payment = Payment(
        enrollment_id=str(enrollment.id),
        student_id=enrollment.student_id,
        amount=data.amount,
        method=data.method,
        target_month=data.target_month,
        transaction_id=data.transaction_id,
        payment_date=data.payment_date or datetime.utcnow(),
        notes=data.notes,
        recorded_by=str(admin.id),
    )
    updated: list[Enrollment] = []
    if data.method == PaymentMethod.PAYHERE:
        payment.status = PaymentStatus.PENDING
        await payment.insert()
    else:
        try:
            updated = await confirm_payment(payment, enrollment)
        except HTTPException:
            raise
        except Exception:
            logger.exception("Manual payment for enrollment %s failed", enrollment.id)
            raise HTTPException(status_code=500, detail="Payment could not be recorded")
        await notify_payment_confirmed(payment, enrollment, get_sms_service(), get_email_service())
    result = payment_to_dict(payment)
    result["enrollments_updated"] = [str(e.id) for e in updated]
    return result


@router.post("/slip", status_code=201)
async def upload_slip(
    user: CurrentUser,
    enrollment_id: str = Form(...),
    amount: float = Form(..., gt=0),
    target_month: Optional[str] = Form(None),
    notes: Optional[str] = Form(None),
    file: UploadFile = File(...),
):
    """Bank-transfer slip from a student; stays pending until an admin approves it."""
    enrollment = await _own_enrollment(enrollment_id, user)
    if target_month:
        parse_month(target_month)
    uploaded = await upload_file(file, folder=f"slips/{enrollment.student_id}")
    payment = Payment(
        enrollment_id=str(enrollment.id),
        student_id=enrollment.student_id,
        amount=amount,
        method=PaymentMethod.BANK_TRANSFER,
        status=PaymentStatus.PENDING,
        target_month=target_month,
        slip_url=uploaded["url"],
        slip_s3_key=uploaded["key"],
        notes=notes,
    )
    await payment.insert()
    if enrollment.payment_status != EnrollmentPaymentStatus.PAID:
        enrollment.payment_status = EnrollmentPaymentStatus.PENDING
        enrollment.updated_at = datetime.utcnow()
        await enrollment.save()
    await notify_admin_of_slip(payment, enrollment, get_sms_service(), settings.admin_phone)
    return payment_to_dict(payment)


@router.patch("/{payment_id}/status")
async def update_payment_status(payment_id: str, data: PaymentStatusUpdate, admin: AdminOnly):
    payment = await get_object_or_404(Payment, payment_id, "Payment")
    enrollment = await get_enrollment_or_404(payment.enrollment_id)
    if data.target_month:
        parse_month(data.target_month)
        payment.target_month = data.target_month
    if data.notes is not None:
        payment.notes = data.notes

    updated: list[Enrollment] = []
    if data.status == PaymentStatus.COMPLETED:
        if payment.status == PaymentStatus.COMPLETED and payment.verified:
            raise HTTPException(status_code=400, detail="Payment is already completed")
        try:
            updated = await confirm_payment(payment, enrollment)
        except HTTPException:
            raise
        except Exception:
            logger.exception("Approving payment %s failed", payment_id)
            raise HTTPException(status_code=500, detail="Payment approval failed")
        await notify_payment_confirmed(payment, enrollment, get_sms_service(), get_email_service())
    else:
        payment.status = data.status
        payment.verified = False
        payment.updated_at = datetime.utcnow()
        await payment.save()
    result = payment_to_dict(payment)
    result["enrollments_updated"] = [str(e.id) for e in updated]
    return result


@router.get("/{payment_id}")
async def get_payment(payment_id: str, user: CurrentUser):
    payment = await get_object_or_404(Payment, payment_id, "Payment")
    if user.role == UserRole.STUDENT and payment.student_id != str(user.id):
        raise HTTPException(status_code=404, detail="Payment not found")
    if user.role == UserRole.INSTRUCTOR:
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return (await _populate([payment]))[0]


@router.get("/{payment_id}/receipt")
async def download_receipt(payment_id: str, user: CurrentUser):
    """Receipt PDF (A5) generated on the fly for a completed payment."""
    payment = await get_object_or_404(Payment, payment_id, "Payment")
    if user.role == UserRole.STUDENT and payment.student_id != str(user.id):
        raise HTTPException(status_code=404, detail="Payment not found")
    if payment.status != PaymentStatus.COMPLETED:
        raise HTTPException(status_code=400, detail="Receipt only for completed payments")
    enrollment = await get_enrollment_or_404(payment.enrollment_id)
    student, lms_class = await payment_parties(enrollment)
    bundle = []
    if lms_class:
        bundle.append((lms_class.name, "theory"))
        for sibling in await Enrollment.find({"bundle_parent_id": str(enrollment.id)}).to_list():
            sibling_oid = safe_object_id(sibling.class_id)
            sibling_class = await LmsClass.get(sibling_oid) if sibling_oid else None
            if sibling_class:
                bundle.append((sibling_class.name, sibling.bundle_role.value))
    pdf_bytes = generate_receipt_pdf_bytes(
        payment,
        {
            "student_name": student.full_name if student else "",
            "student_email": student.email if student else "",
            "class_name": lms_class.name if lms_class else "",
            "bundle": bundle if len(bundle) > 1 else [],
        },
    )
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="receipt-{payment_id}.pdf"'},
    )
