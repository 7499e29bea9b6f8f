from datetime import datetime, timedelta
from typing import Any, Dict

from fastapi import APIRouter

from lms.api.deps import AdminOnly
from lms.models.enrollment import Enrollment
from lms.models.lms_class import LmsClass
from lms.models.payment import Payment, PaymentMethod, PaymentStatus
from lms.models.session import ClassSession
from lms.models.ticket import Ticket, TicketStatus
from lms.models.user import User, UserRole
from lms.services import reports
from lms.services.billing import month_key
from lms.services.payments import safe_object_id

router = APIRouter()


@router.get("/stats")
async def get_admin_stats(admin: AdminOnly) -> Dict[str, Any]:
    """Overview statistics for the admin dashboard."""
    now = datetime.utcnow()
    current_month = month_key(now)

    total_students = await User.find({"role": UserRole.STUDENT.value, "is_deleted": False}).count()
    total_instructors = await User.find({"role": UserRole.INSTRUCTOR.value, "is_deleted": False}).count()
    total_classes = await LmsClass.find({"is_deleted": False}).count()
    active_enrollments = await Enrollment.find(
        {"is_active": True, "$or": [{"access_end_date": None}, {"access_end_date": {"$gte": now}}]}
    ).count()
    open_tickets = await Ticket.find(
        {"status": {"$in": [TicketStatus.OPEN.value, TicketStatus.IN_PROGRESS.value]}}
    ).count()

    # Completed revenue over the last six billing months
    since = month_key(now.replace(day=1) - timedelta(days=155))
    completed = await Payment.find(
        {"status": PaymentStatus.COMPLETED.value, "target_month": {"$gte": since}}
    ).to_list()
    frame = reports.payments_frame(
        [
            {
                "payment_id": str(p.id),
                "payment_date": p.payment_date,
                "target_month": p.target_month,
                "amount": p.amount,
                "currency": p.currency,
                "method": p.method.value,
                "status": p.status.value,
                "verified": p.verified,
            }
            for p in completed
        ]
    )
    revenue_by_month = reports.monthly_revenue(frame)

    pending_slips = await Payment.find(
        {"method": PaymentMethod.BANK_TRANSFER.value, "status": PaymentStatus.PENDING.value}
    ).count()

    upcoming = (
        await ClassSession.find({"start_at": {"$gte": now}, "is_cancelled": False})
        .sort("start_at")
        .limit(5)
        .to_list()
    )
    class_ids = [oid for oid in {safe_object_id(s.class_id) for s in upcoming} if oid]
    class_names = {
        str(c.id): c.name for c in await LmsClass.find({"_id": {"$in": class_ids}}).to_list()
    }

    return {
        "counts": {
            "students": total_students,
            "instructors": total_instructors,
            "classes": total_classes,
            "active_enrollments": active_enrollments,
            "open_tickets": open_tickets,
        },
        "finance": {
            "month": current_month,
            "revenue_this_month": revenue_by_month.get(current_month, 0.0),
            "revenue_by_month": revenue_by_month,
            "pending_slips": pending_slips,
        },
        "upcoming_sessions": [
            {
                "id": str(s.id),
                "class_id": s.class_id,
                "class_name": class_names.get(s.class_id, ""),
                "title": s.title,
                "start_at": s.start_at.isoformat(),
            }
            for s in upcoming
        ],
    }
