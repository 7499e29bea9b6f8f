from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException

from lms.api.deps import AdminOnly, CurrentUser, get_object_or_404
from lms.models.batch import Batch, BatchCreate, BatchUpdate

router = APIRouter()
public_router = APIRouter()


def batch_to_dict(b: Batch) -> dict:
    data = b.model_dump(mode="json", exclude={"id", "revision_id"})
    data["id"] = str(b.id)
    return data


def _check_dates(start: Optional[datetime], end: Optional[datetime]) -> None:
    if start and end and start >= end:
        raise HTTPException(status_code=400, detail="start_date must be before end_date")


@public_router.get("/public")
async def list_public_batches():
    """Active batches for the registration form (no auth)."""
    batches = await Batch.find({"is_active": True}).sort("name").to_list()
    return [{"id": str(b.id), "name": b.name, "description": b.description} for b in batches]


@router.get("/")
async def list_batches(user: CurrentUser, active_only: bool = False):
    query = {"is_active": True} if active_only else {}
    batches = await Batch.find(query).sort("-created_at").to_list()
    return [batch_to_dict(b) for b in batches]


@router.post("/", status_code=201)
async def create_batch(data: BatchCreate, admin: AdminOnly):
    name = data.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    _check_dates(data.start_date, data.end_date)
    if await Batch.find_one({"name": name}):
        raise HTTPException(status_code=409, detail="A batch with this name already exists")
    batch = Batch(**{**data.model_dump(), "name": name})
    await batch.insert()
    return batch_to_dict(batch)


@router.get("/{batch_id}")
async def get_batch(batch_id: str, user: CurrentUser):
    return batch_to_dict(await get_object_or_404(Batch, batch_id, "Batch"))


@router.patch("/{batch_id}")
async def update_batch(batch_id: str, data: BatchUpdate, admin: AdminOnly):
    batch = await get_object_or_404(Batch, batch_id, "Batch")
    update_data = data.model_dump(exclude_unset=True)
    if "name" in update_data:
        name = (update_data["name"] or "").strip()
        if not name:
            raise HTTPException(status_code=400, detail="name is required")
        clash = await Batch.find_one({"name": name})
        if clash and clash.id != batch.id:
            raise HTTPException(status_code=409, detail="A batch with this name already exists")
        update_data["name"] = name
    _check_dates(
        update_data.get("start_date", batch.start_date),
        update_data.get("end_date", batch.end_date),
    )
    for field, value in update_data.items():
        setattr(batch, field, value)
    batch.updated_at = datetime.utcnow()
    await batch.save()
    return batch_to_dict(batch)


@router.delete("/{batch_id}")
async def delete_batch(batch_id: str, admin: AdminOnly):
    batch = await get_object_or_404(Batch, batch_id, "Batch")
    await batch.delete()
    return {"id": batch_id, "deleted": True}
