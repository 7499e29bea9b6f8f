"""AWS S3: payment slips, class materials, knowledge base files and chat attachments."""
import asyncio
import logging
import uuid

import boto3
from botocore.exceptions import ClientError
from fastapi import HTTPException, UploadFile

from lms.config import settings

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 25 * 1024 * 1024

_s3 = None


def get_s3():
    global _s3
    if _s3 is None:
        _s3 = boto3.client(
            "s3",
            region_name=settings.aws_region,
            aws_access_key_id=settings.aws_access_key_id or None,
            aws_secret_access_key=settings.aws_secret_access_key or None,
        )
    return _s3


def public_url(key: str, bucket: str | None = None) -> str:
    bucket = bucket or settings.s3_bucket_uploads
    return f"https://{bucket}.s3.{settings.aws_region}.amazonaws.com/{key}"


def _put_object_sync(key: str, body: bytes, content_type: str) -> None:
    get_s3().put_object(
        Bucket=settings.s3_bucket_uploads,
        Key=key,
        Body=body,
        ContentType=content_type,
    )


async def upload_file(file: UploadFile, *, folder: str) -> dict:
    """Upload ``file`` under ``folder/``; return url, key, name, size and mime."""
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large")
    original = file.filename or "file"
    ext = original.rsplit(".", 1)[-1].lower() if "." in original else "bin"
    key = f"{folder}/{uuid.uuid4().hex}.{ext}"
    content_type = file.content_type or "application/octet-stream"
    try:
        await asyncio.to_thread(_put_object_sync, key, content, content_type)
    except ClientError as e:
        logger.error("S3 upload of %s failed: %s", key, e)
        raise HTTPException(status_code=502, detail="File upload failed")
    return {
        "url": public_url(key),
        "key": key,
        "original_name": original,
        "file_name": key.rsplit("/", 1)[-1],
        "size": len(content),
        "mime_type": content_type,
    }


async def delete_from_s3(key: str | None) -> None:
    if not key:
        return
    try:
        await asyncio.to_thread(get_s3().delete_object, Bucket=settings.s3_bucket_uploads, Key=key)
    except ClientError as e:
        logger.warning("S3 delete of %s failed: %s", key, e)
