"""Bundle enrollment: pricing, transactional creation and lazy expiry."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from beanie import PydanticObjectId
from fastapi import HTTPException
from pymongo.errors import DuplicateKeyError

from lms import db
from lms.models.enrollment import (
    BundleRole,
    Enrollment,
    EnrollmentCreate,
    EnrollmentPaymentStatus,
    SubscriptionType,
)
from lms.models.lms_class import LmsClass
from lms.models.user import User
from lms.services.billing import end_of_current_month
from lms.services.sms import SmsService

logger = logging.getLogger(__name__)

_PRICING_KEYS = {
    (False, False): "theory_only",
    (True, False): "theory_revision",
    (False, True): "theory_paper",
    (True, True): "full",
}


def bundle_pricing_key(include_revision: bool, include_paper: bool) -> str:
    return _PRICING_KEYS[(bool(include_revision), bool(include_paper))]


def resolve_bundle_price(primary: LmsClass, siblings: list[LmsClass], key: str) -> float:
    """Explicit bundle price on the primary class, else the sum of component prices."""
    explicit = getattr(primary.bundle_pricing, key, None)
    if explicit is not None:
        return float(explicit)
    return float(primary.price) + sum(float(c.price) for c in siblings)


@dataclass
class BundleQuote:
    primary: LmsClass
    siblings: list[tuple[BundleRole, LmsClass]] = field(default_factory=list)
    pricing_key: str = "theory_only"
    total_price: float = 0.0

    @property
    def include_revision(self) -> bool:
        return any(role == BundleRole.REVISION for role, _ in self.siblings)

    @property
    def include_paper(self) -> bool:
        return any(role == BundleRole.PAPER for role, _ in self.siblings)

    @property
    def classes(self) -> list[LmsClass]:
        return [self.primary, *(c for _, c in self.siblings)]

    def to_dict(self) -> dict:
        return {
            "class_id": str(self.primary.id),
            "pricing_key": self.pricing_key,
            "total_price": self.total_price,
            "members": [
                {"class_id": str(c.id), "name": c.name, "role": role.value, "price": c.price}
                for role, c in [(BundleRole.PRIMARY, self.primary), *self.siblings]
            ],
        }


async def get_class_or_404(class_id: Optional[str], session: Any = None, label: str = "Class") -> LmsClass:
    try:
        oid = PydanticObjectId(class_id)
    except Exception:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    lms_class = await LmsClass.get(oid, session=session)
    if not lms_class or lms_class.is_deleted:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return lms_class


async def build_quote(
    class_id: str,
    include_revision: bool,
    include_paper: bool,
    session: Any = None,
) -> BundleQuote:
    """Resolve bundle members. A flag without a linked class on the primary is ignored."""
    primary = await get_class_or_404(class_id, session=session)
    siblings: list[tuple[BundleRole, LmsClass]] = []
    if include_revision and primary.revision_class_id:
        siblings.append(
            (BundleRole.REVISION, await get_class_or_404(primary.revision_class_id, session, "Revision class"))
        )
    if include_paper and primary.paper_class_id:
        siblings.append(
            (BundleRole.PAPER, await get_class_or_404(primary.paper_class_id, session, "Paper class"))
        )
    quote = BundleQuote(primary=primary, siblings=siblings)
    quote.pricing_key = bundle_pricing_key(quote.include_revision, quote.include_paper)
    quote.total_price = resolve_bundle_price(primary, [c for _, c in siblings], quote.pricing_key)
    return quote


@dataclass
class EnrollmentResult:
    primary: Enrollment
    siblings: list[Enrollment]
    created: list[Enrollment]
    quote: BundleQuote


async def enroll_with_bundle(
    student: User,
    data: EnrollmentCreate,
    sms: Optional[SmsService] = None,
) -> EnrollmentResult:
    """Create the primary enrollment and its bundle siblings in one transaction.

    Confirmation SMS go out only after commit, one per newly created
    enrollment; each failure is logged on its own.
    """
    student_id = str(student.id)

    async def _enroll(session):
        quote = await build_quote(data.class_id, data.include_revision, data.include_paper, session=session)
        primary_class_id = str(quote.primary.id)
        existing = await Enrollment.find_one(
            {"student_id": student_id, "class_id": primary_class_id}, session=session
        )
        if existing:
            raise HTTPException(status_code=409, detail="Student is already enrolled in this class")

        access_start = data.access_start_date or datetime.utcnow()
        access_end = data.access_end_date
        if access_end is None and data.subscription_type == SubscriptionType.MONTHLY:
            access_end = end_of_current_month()

        primary = Enrollment(
            student_id=student_id,
            class_id=primary_class_id,
            subscription_type=data.subscription_type,
            access_start_date=access_start,
            access_end_date=access_end,
            bundle_role=BundleRole.PRIMARY,
            include_revision=quote.include_revision,
            include_paper=quote.include_paper,
            total_price=quote.total_price,
            notes=data.notes,
        )
        await primary.insert(session=session)
        created = [primary]
        siblings = []

        for role, member in quote.siblings:
            enrollment = await Enrollment.find_one(
                {"student_id": student_id, "class_id": str(member.id)}, session=session
            )
            if enrollment is None:
                enrollment = Enrollment(
                    student_id=student_id,
                    class_id=str(member.id),
                    subscription_type=data.subscription_type,
                    access_start_date=access_start,
                    access_end_date=access_end,
                    bundle_role=role,
                    bundle_parent_id=str(primary.id),
                )
                await enrollment.insert(session=session)
                created.append(enrollment)
            elif not enrollment.bundle_parent_id:
                enrollment.bundle_parent_id = str(primary.id)
                enrollment.bundle_role = role
                enrollment.updated_at = datetime.utcnow()
                await enrollment.save(session=session)
            siblings.append(enrollment)

        for lms_class in quote.classes:
            await LmsClass.find({"_id": lms_class.id}, session=session).update(
                {"$addToSet": {"students": student_id}}, session=session
            )
        return EnrollmentResult(primary=primary, siblings=siblings, created=created, quote=quote)

    try:
        result = await db.run_in_transaction(_enroll)
    except HTTPException:
        raise
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Student is already enrolled in this class")
    except Exception:
        logger.exception("Bundle enrollment failed for student %s class %s", student_id, data.class_id)
        raise HTTPException(status_code=500, detail="Enrollment failed")

    if sms is not None and student.phone:
        names = {str(c.id): c.name for c in result.quote.classes}
        for enrollment in result.created:
            await sms.send_quietly(student.phone, sms.enrollment_confirmation(names.get(enrollment.class_id, "")))
    return result


def is_lapsed(enrollment: Enrollment, now: Optional[datetime] = None) -> bool:
    now = now or datetime.utcnow()
    return bool(
        enrollment.is_active
        and enrollment.access_end_date is not None
        and enrollment.access_end_date < now
    )


async def expire_lapsed(enrollments: list[Enrollment], now: Optional[datetime] = None) -> list[Enrollment]:
    """Flip active enrollments past their access end to expired and persist them."""
    now = now or datetime.utcnow()
    for enrollment in enrollments:
        if is_lapsed(enrollment, now):
            enrollment.is_active = False
            enrollment.payment_status = EnrollmentPaymentStatus.EXPIRED
            enrollment.updated_at = now
            await enrollment.save()
    return enrollments


async def active_enrollment(student_id: str, class_id: str) -> Optional[Enrollment]:
    """The student's enrollment in the class if it currently grants access."""
    enrollment = await Enrollment.find_one({"student_id": student_id, "class_id": class_id})
    if not enrollment:
        return None
    await expire_lapsed([enrollment])
    if not enrollment.is_active or enrollment.is_blocked:
        return None
    return enrollment


async def active_students(class_id: str) -> list[User]:
    """Students whose enrollment in the class currently grants access."""
    enrollments = await Enrollment.find({"class_id": class_id, "is_active": True, "is_blocked": False}).to_list()
    await expire_lapsed(enrollments)
    ids = []
    for enrollment in enrollments:
        if enrollment.is_active:
            try:
                ids.append(PydanticObjectId(enrollment.student_id))
            except Exception:
                continue
    if not ids:
        return []
    return await User.find({"_id": {"$in": ids}, "is_active": True, "is_deleted": False}).to_list()


def enrollment_to_dict(enrollment: Enrollment) -> dict:
    data = enrollment.model_dump(mode="json", exclude={"id", "revision_id"})
    data["id"] = str(enrollment.id)
    return data
