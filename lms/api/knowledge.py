"""Knowledge base documents."""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile

from lms.api.deps import CurrentUser, StaffOnly, get_object_or_404
from lms.models.content import ContentUpdate, KnowledgeBase
from lms.models.fields import UtcDateTime
from lms.models.user import UserRole
from lms.services.s3 import delete_from_s3, upload_file

router = APIRouter()


def knowledge_to_dict(k: KnowledgeBase) -> dict:
    data = k.model_dump(mode="json", exclude={"id", "revision_id", "file_s3_key"})
    data["id"] = str(k.id)
    return data


@router.get("/")
async def list_knowledge(user: CurrentUser, category: Optional[str] = None):
    query: dict = {}
    if category:
        query["category"] = category
    if user.role == UserRole.STUDENT:
        query["is_published"] = True
        query["publish_at"] = {"$lte": datetime.utcnow()}
    items = await KnowledgeBase.find(query).sort("-publish_at").to_list()
    return [knowledge_to_dict(k) for k in items]


@router.post("/", status_code=201)
async def create_knowledge(
    user: StaffOnly,
    title: str = Form(...),
    description: Optional[str] = Form(None),
    category: str = Form("General"),
    publish_at: Optional[UtcDateTime] = Form(None),
    is_published: bool = Form(True),
    file: Optional[UploadFile] = File(None),
):
    entry = KnowledgeBase(
        title=title,
        description=description,
        category=category,
        is_published=is_published,
        uploaded_by=str(user.id),
    )
    if publish_at:
        entry.publish_at = publish_at
    if file is not None and file.filename:
        uploaded = await upload_file(file, folder="knowledge")
        entry.file_url = uploaded["url"]
        entry.file_s3_key = uploaded["key"]
        entry.file_name = uploaded["original_name"]
        entry.file_mime = uploaded["mime_type"]
    await entry.insert()
    return knowledge_to_dict(entry)


@router.get("/{entry_id}")
async def get_knowledge(entry_id: str, user: CurrentUser):
    entry = await get_object_or_404(KnowledgeBase, entry_id, "Document")
    if user.role == UserRole.STUDENT and (not entry.is_published or entry.publish_at > datetime.utcnow()):
        raise HTTPException(status_code=404, detail="Document not found")
    return knowledge_to_dict(entry)


@router.patch("/{entry_id}")
async def update_knowledge(entry_id: str, data: ContentUpdate, user: StaffOnly):
    entry = await get_object_or_404(KnowledgeBase, entry_id, "Document")
    for field, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(entry, field, value)
    entry.updated_at = datetime.utcnow()
    await entry.save()
    return knowledge_to_dict(entry)


@router.delete("/{entry_id}")
async def delete_knowledge(entry_id: str, user: StaffOnly):
    entry = await get_object_or_404(KnowledgeBase, entry_id, "Document")
    await delete_from_s3(entry.file_s3_key)
    await entry.delete()
    return {"id": entry_id, "deleted": True}
