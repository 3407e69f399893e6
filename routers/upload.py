from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from images import MAX_FILE_SIZE, ImageService, InvalidImageError, get_image_service
from security import get_current_user

router = APIRouter(prefix="/api/upload", tags=["upload"])


async def _read(image: Optional[UploadFile]) -> bytes:
    if image is None or not image.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if image.size is not None and image.size > MAX_FILE_SIZE:
        raise HTTPException(status_code=400, detail="File too large. Maximum size is 5MB")
    # one byte past the limit is enough for check_image to reject it
    return await image.read(MAX_FILE_SIZE + 1)


@router.post("/single")
async def upload_single(
    image: Optional[UploadFile] = File(None),
    current_user=Depends(get_current_user),
    images: ImageService = Depends(get_image_service),
):
    content = await _read(image)
    try:
        return images.upload_image(content, image.filename)
    except InvalidImageError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/placeholder/{title}")
def placeholder(title: str):
    return {"url": ImageService.generate_image_placeholder(title)}


@router.put("/{public_id:path}")
async def update_image(
    public_id: str,
    image: Optional[UploadFile] = File(None),
    current_user=Depends(get_current_user),
    images: ImageService = Depends(get_image_service),
):
    content = await _read(image)
    try:
        return images.update_image(public_id, content, image.filename)
    except InvalidImageError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.delete("/{public_id:path}")
def delete_image(
    public_id: str,
    current_user=Depends(get_current_user),
    images: ImageService = Depends(get_image_service),
):
    images.delete_image(public_id)
    return {"message": "Image deleted successfully"}
