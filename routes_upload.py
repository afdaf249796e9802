"""
Image upload

Images are forwarded to Cloudinary through its SDK; only the resulting URL is
stored by the caller.
"""

import io

import cloudinary.uploader
import structlog
from cloudinary.exceptions import Error as CloudinaryError
from fastapi import APIRouter, Depends, File, UploadFile

from config import Settings, get_settings
from errors import ServiceError, ValidationFailed, envelope
from security import get_current_user

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/upload", tags=["upload"])

MAX_IMAGE_BYTES = 5 * 1024 * 1024
UPLOAD_FOLDER = "tifincart"
TIMEOUT = 30


def upload_image(settings: Settings, filename: str, content: bytes) -> dict:
    if not (settings.cloudinary_cloud_name and settings.cloudinary_api_key and settings.cloudinary_api_secret):
        raise ServiceError("Image storage is not configured")
    try:
        result = cloudinary.uploader.upload(
            io.BytesIO(content),
            filename=filename,
            folder=UPLOAD_FOLDER,
            resource_type="image",
            cloud_name=settings.cloudinary_cloud_name,
            api_key=settings.cloudinary_api_key,
            api_secret=settings.cloudinary_api_secret,
            timeout=TIMEOUT,
        )
    except CloudinaryError as e:
        logger.error("image_upload_failed", error=str(e))
        raise ServiceError("Failed to upload image")
    return {"url": result["secure_url"], "public_id": result["public_id"]}


@router.post("/image")
def upload(image: UploadFile = File(None), user: dict = Depends(get_current_user),
           settings: Settings = Depends(get_settings)):
    if image is None:
        raise ValidationFailed("No image file provided")
    if not (image.content_type or "").startswith("image/"):
        raise ValidationFailed("File must be an image")
    content = image.file.read()
    if len(content) > MAX_IMAGE_BYTES:
        raise ValidationFailed("Image size must be less than 5MB")
    result = upload_image(settings, image.filename or "upload", content)
    logger.info("image_uploaded", user_id=user["_id"], public_id=result["public_id"], size=len(content))
    return envelope(data=result)
