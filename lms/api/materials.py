"""Class materials (lecture notes, slides) stored on S3."""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile

from lms.api.deps import CurrentUser, StaffOnly, get_object_or_404
from lms.models.content import ContentUpdate, Material, MaterialType
from lms.models.lms_class import LmsClass
from lms.models.user import User, UserRole
from lms.services.enrollments import active_enrollment, get_class_or_404
from lms.services.s3 import delete_from_s3, upload_file

router = APIRouter()

_TYPE_BY_EXTENSION = {
    "pdf": MaterialType.PDF,
    "ppt": MaterialType.PPTX,
    "pptx": MaterialType.PPTX,
    "doc": MaterialType.DOCX,
    "docx": MaterialType.DOCX,
    "png": MaterialType.IMAGE,
    "jpg": MaterialType.IMAGE,
    "jpeg": MaterialType.IMAGE,
    "webp": MaterialType.IMAGE,
}


def material_type(filename: Optional[str]) -> MaterialType:
    ext = filename.rsplit(".", 1)[-1].lower() if filename and "." in filename else ""
    return _TYPE_BY_EXTENSION.get(ext, MaterialType.OTHER)


def material_to_dict(m: Material) -> dict:
    data = m.model_dump(mode="json", exclude={"id", "revision_id", "file_s3_key"})
    data["id"] = str(m.id)
    return data


def _check_class_staff(user: User, c: LmsClass) -> None:
    if user.role == UserRole.INSTRUCTOR and c.instructor_id != str(user.id):
        raise HTTPException(status_code=403, detail="Not the instructor of this class")


@router.get("/")
async def list_materials(class_id: str, user: CurrentUser):
    c = await get_class_or_404(class_id)
    query: dict = {"class_id": class_id}
    if user.role == UserRole.STUDENT:
        if not await active_enrollment(str(user.id), class_id):
            raise HTTPException(status_code=403, detail="No active enrollment for this class")
        query["is_published"] = True
    else:
        _check_class_staff(user, c)
    items = await Material.find(query).sort("-created_at").to_list()
    return [material_to_dict(m) for m in items]


@router.post("/", status_code=201)
async def create_material(
    user: StaffOnly,
    class_id: str = Form(...),
    title: str = Form(...),
    description: Optional[str] = Form(None),
    is_published: bool = Form(True),
    file: UploadFile = File(...),
):
    c = await get_class_or_404(class_id)
    _check_class_staff(user, c)
    uploaded = await upload_file(file, folder=f"materials/{class_id}")
    material = Material(
        class_id=class_id,
        title=title,
        description=description,
        file_url=uploaded["url"],
        file_s3_key=uploaded["key"],
        file_type=material_type(uploaded["original_name"]),
        file_size=uploaded["size"],
        uploaded_by=str(user.id),
        is_published=is_published,
    )
    await material.insert()
    return material_to_dict(material)


@router.patch("/{material_id}")
async def update_material(material_id: str, data: ContentUpdate, user: StaffOnly):
    material = await get_object_or_404(Material, material_id, "Material")
    _check_class_staff(user, await get_class_or_404(material.class_id))
    update_data = data.model_dump(exclude_unset=True, include={"title", "description", "is_published"})
    for field, value in update_data.items():
        if value is not None:
            setattr(material, field, value)
    material.updated_at = datetime.utcnow()
    await material.save()
    return material_to_dict(material)


@router.delete("/{material_id}")
async def delete_material(material_id: str, user: StaffOnly):
    material = await get_object_or_404(Material, material_id, "Material")
    _check_class_staff(user, await get_class_or_404(material.class_id))
    await delete_from_s3(material.file_s3_key)
    await material.delete()
    return {"id": material_id, "deleted": True}
