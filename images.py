import logging
import os
from typing import Any, Dict, Optional
from urllib.parse import quote

import cloudinary
import cloudinary.uploader

import config

logger = logging.getLogger(__name__)

FOLDER = "book-management"
ALLOWED_FORMATS = ("jpg", "jpeg", "png", "webp")
MAX_FILE_SIZE = 5 * 1024 * 1024
# standard book cover size
TRANSFORMATION = [
    {"width": 500, "height": 750, "crop": "fill"},
    {"quality": "auto"},
    {"fetch_format": "auto"},
]

cloudinary.config(
    cloud_name=config.CLOUDINARY_CLOUD_NAME,
    api_key=config.CLOUDINARY_API_KEY,
    api_secret=config.CLOUDINARY_API_SECRET,
    secure=True,
)


class InvalidImageError(ValueError):
    pass


def check_image(filename: Optional[str], size: int) -> None:
    ext = os.path.splitext(filename or "")[1].lower().lstrip(".")
    if ext not in ALLOWED_FORMATS:
        raise InvalidImageError(f"Unsupported image format. Allowed: {', '.join(ALLOWED_FORMATS)}")
    if size > MAX_FILE_SIZE:
        raise InvalidImageError("File too large. Maximum size is 5MB")
    if size == 0:
        raise InvalidImageError("Uploaded file is empty")


class ImageService:
    def __init__(self, uploader=cloudinary.uploader):
        self.uploader = uploader

    def upload_image(self, content: bytes, filename: str) -> Dict[str, Any]:
        check_image(filename, len(content))
        result = self.uploader.upload(
            content,
            folder=FOLDER,
            allowed_formats=list(ALLOWED_FORMATS),
            transformation=TRANSFORMATION,
        )
        return {"url": result["secure_url"], "publicId": result["public_id"]}

    def delete_image(self, public_id: str) -> None:
        self.uploader.destroy(public_id)

    def update_image(self, old_public_id: Optional[str], content: bytes, filename: str) -> Dict[str, Any]:
        check_image(filename, len(content))
        if old_public_id:
            self.delete_image(old_public_id)
        return self.upload_image(content, filename)

    @staticmethod
    def generate_image_placeholder(title: str) -> str:
        return f"https://api.dicebear.com/7.x/initials/svg?seed={quote(title, safe='')}&backgroundColor=random"


image_service = ImageService()


def get_image_service() -> ImageService:
    return image_service
