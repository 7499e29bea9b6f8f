"""Classes: CRUD, schedule-driven session generation and rosters."""
import logging
import re
from datetime import datetime

from fastapi import APIRouter, HTTPException

from lms.api.deps import AdminOnly, CurrentUser, StaffOnly, get_object_or_404
from lms.models.lms_class import ClassCreate, ClassLevel, ClassUpdate, LmsClass
from lms.models.user import User, UserOut, UserRole
from lms.services.enrollments import get_class_or_404
from lms.services.payments import safe_object_id
from lms.services.scheduling import generate_initial_sessions, get_zone, remove_class_sessions
from lms.services.zoom import get_zoom_service

logger = logging.getLogger(__name__)

router = APIRouter()


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")
    return slug or "class"


async def unique_slug(name: str, exclude_id=None) -> str:
    base = slugify(name)
    slug, n = base, 1
    while True:
        existing = await LmsClass.find_one({"slug": slug})
        if not existing or existing.id == exclude_id:
            return slug
        n += 1
        slug = f"{base}-{n}"


def class_to_dict(c: LmsClass, viewer: User | None = None) -> dict:
    data = c.model_dump(mode="json", exclude={"id", "revision_id"})
    data["id"] = str(c.id)
    if viewer is not None and viewer.role == UserRole.STUDENT:
        data.pop("students", None)
    return data


async def _validate_links(revision_class_id, paper_class_id, self_id=None):
    for label, linked in (("Revision class", revision_class_id), ("Paper class", paper_class_id)):
        if linked is None:
            continue
        if self_id is not None and linked == str(self_id):
            raise HTTPException(status_code=400, detail=f"{label} cannot be the class itself")
        await get_class_or_404(linked, label=label)


def _validate_timezones(schedules) -> None:
    for schedule in schedules or []:
        get_zone(schedule.timezone)


async def _instructor_guard(user: User, c: LmsClass) -> None:
    if user.role == UserRole.INSTRUCTOR and c.instructor_id != str(user.id):
        raise HTTPException(status_code=403, detail="Not the instructor of this class")


@router.get("/")
async def list_classes(
    user: CurrentUser,
    level: ClassLevel | None = None,
    batch_id: str | None = None,
    include_inactive: bool = False,
):
    query: dict = {"is_deleted": False}
    if user.role == UserRole.STUDENT:
        query.update({"is_published": True, "is_active": True})
    elif not include_inactive:
        query["is_active"] = True
    if user.role == UserRole.INSTRUCTOR:
        query["instructor_id"] = str(user.id)
    if level:
        query["level"] = level.value
    if batch_id:
        query["batch_id"] = batch_id
    classes = await LmsClass.find(query).sort("name").to_list()
    return [class_to_dict(c, user) for c in classes]


@router.get("/{class_id}")
async def get_class(class_id: str, user: CurrentUser):
    c = await get_class_or_404(class_id)
    if user.role == UserRole.STUDENT and not (c.is_published and c.is_active):
        raise HTTPException(status_code=404, detail="Class not found")
    return class_to_dict(c, user)


@router.post("/", status_code=201)
async def create_class(data: ClassCreate, admin: AdminOnly):
    _validate_timezones(data.time_schedules)
    await _validate_links(data.revision_class_id, data.paper_class_id)
    if data.instructor_id:
        instructor = await get_object_or_404(User, data.instructor_id, "Instructor")
        if instructor.role != UserRole.INSTRUCTOR:
            raise HTTPException(status_code=400, detail="instructor_id must reference an instructor")

    c = LmsClass(
        slug=await unique_slug(data.name),
        **data.model_dump(exclude={"skip_zoom"}),
    )
    await c.insert()
    sessions = await generate_initial_sessions(c, get_zoom_service(), with_zoom=not data.skip_zoom)
    logger.info("Class %s created with %d session(s)", c.id, len(sessions))
    result = class_to_dict(c)
    result["sessions_created"] = len(sessions)
    return result


@router.patch("/{class_id}")
async def update_class(class_id: str, data: ClassUpdate, user: StaffOnly):
    c = await get_class_or_404(class_id)
    await _instructor_guard(user, c)
    update_data = data.model_dump(exclude_unset=True, exclude={"skip_zoom"})
    if user.role == UserRole.INSTRUCTOR:
        for restricted in ("price", "bundle_pricing", "revision_class_id", "paper_class_id", "instructor_id", "is_published"):
            if restricted in update_data:
                raise HTTPException(status_code=403, detail=f"Only admins can change {restricted}")

    if "time_schedules" in update_data:
        _validate_timezones(data.time_schedules)
    if "revision_class_id" in update_data or "paper_class_id" in update_data:
        await _validate_links(update_data.get("revision_class_id"), update_data.get("paper_class_id"), c.id)
    if "name" in update_data and update_data["name"] != c.name:
        c.slug = await unique_slug(update_data["name"], exclude_id=c.id)

    schedule_changed = "time_schedules" in update_data and [
        s.model_dump() for s in data.time_schedules or []
    ] != [s.model_dump() for s in c.time_schedules]

    for field in update_data:
        setattr(c, field, getattr(data, field))
    c.updated_at = datetime.utcnow()
    await c.save()

    regenerated = 0
    if schedule_changed:
        zoom = get_zoom_service()
        removed = await remove_class_sessions(c, zoom)
        regenerated = len(await generate_initial_sessions(c, zoom, with_zoom=not data.skip_zoom))
        logger.info("Class %s schedule changed: %d session(s) replaced by %d", c.id, removed, regenerated)
    result = class_to_dict(c)
    result["sessions_regenerated"] = regenerated
    return result


@router.delete("/{class_id}")
async def delete_class(class_id: str, admin: AdminOnly):
    """Soft delete; sessions and their Zoom meetings are removed."""
    c = await get_class_or_404(class_id)
    removed = await remove_class_sessions(c, get_zoom_service())
    c.is_deleted = True
    c.is_active = False
    c.is_published = False
    c.updated_at = datetime.utcnow()
    await c.save()
    return {"id": class_id, "deleted": True, "sessions_removed": removed}


@router.post("/{class_id}/activate")
async def activate_class(class_id: str, admin: AdminOnly):
    c = await get_class_or_404(class_id)
    c.is_active = True
    c.updated_at = datetime.utcnow()
    await c.save()
    return {"id": class_id, "is_active": True}


@router.post("/{class_id}/deactivate")
async def deactivate_class(class_id: str, admin: AdminOnly):
    c = await get_class_or_404(class_id)
    c.is_active = False
    c.updated_at = datetime.utcnow()
    await c.save()
    return {"id": class_id, "is_active": False}


@router.get("/{class_id}/students")
async def class_students(class_id: str, user: StaffOnly):
    c = await get_class_or_404(class_id)
    await _instructor_guard(user, c)
    oids = [oid for oid in (safe_object_id(s) for s in c.students) if oid]
    if not oids:
        return []
    students = await User.find({"_id": {"$in": oids}}).sort("first_name").to_list()
    return [UserOut.from_user(s) for s in students]
