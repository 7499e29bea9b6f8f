from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException

from lms.api.deps import CurrentUser, StaffOnly, get_object_or_404
from lms.models.content import Announcement, AnnouncementCreate, AnnouncementUpdate
from lms.models.enrollment import Enrollment
from lms.models.user import User, UserRole
from lms.services.enrollments import get_class_or_404

router = APIRouter()


def announcement_to_dict(a: Announcement) -> dict:
    data = a.model_dump(mode="json", exclude={"id", "revision_id"})
    data["id"] = str(a.id)
    return data


async def _check_target(user: User, class_id: Optional[str]) -> None:
    """Instructors may only post to their own classes; global posts are admin only."""
    if class_id:
        c = await get_class_or_404(class_id)
        if user.role == UserRole.INSTRUCTOR and c.instructor_id != str(user.id):
            raise HTTPException(status_code=403, detail="Not the instructor of this class")
    elif user.role != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Only admins can post global announcements")


@router.get("/")
async def list_announcements(user: CurrentUser, class_id: Optional[str] = None):
    query: dict = {}
    if user.role == UserRole.STUDENT:
        query["is_published"] = True
        if class_id:
            query["class_id"] = {"$in": [None, class_id]}
        else:
            enrolled = await Enrollment.find({"student_id": str(user.id), "is_active": True}).to_list()
            query["class_id"] = {"$in": [None, *(e.class_id for e in enrolled)]}
    elif class_id:
        query["class_id"] = class_id
    items = await Announcement.find(query).sort("-created_at").to_list()
    return [announcement_to_dict(a) for a in items]


@router.post("/", status_code=201)
async def create_announcement(data: AnnouncementCreate, user: StaffOnly):
    await _check_target(user, data.class_id)
    announcement = Announcement(**data.model_dump(), author_id=str(user.id))
    await announcement.insert()
    return announcement_to_dict(announcement)


@router.get("/{announcement_id}")
async def get_announcement(announcement_id: str, user: CurrentUser):
    a = await get_object_or_404(Announcement, announcement_id, "Announcement")
    if user.role == UserRole.STUDENT and not a.is_published:
        raise HTTPException(status_code=404, detail="Announcement not found")
    return announcement_to_dict(a)


@router.patch("/{announcement_id}")
async def update_announcement(announcement_id: str, data: AnnouncementUpdate, user: StaffOnly):
    a = await get_object_or_404(Announcement, announcement_id, "Announcement")
    await _check_target(user, a.class_id)
    update_data = data.model_dump(exclude_unset=True)
    if "class_id" in update_data:
        await _check_target(user, update_data["class_id"])
    for field, value in update_data.items():
        setattr(a, field, value)
    a.updated_at = datetime.utcnow()
    await a.save()
    return announcement_to_dict(a)


@router.delete("/{announcement_id}")
async def delete_announcement(announcement_id: str, user: StaffOnly):
    a = await get_object_or_404(Announcement, announcement_id, "Announcement")
    await _check_target(user, a.class_id)
    await a.delete()
    return {"id": announcement_id, "deleted": True}
