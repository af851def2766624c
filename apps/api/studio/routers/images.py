"""One-time retrieval of generated images."""

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ..dependencies import get_image_store
from ..storage import ImageStore


router = APIRouter(prefix="/images", tags=["images"])


@router.get("/{image_id}")
async def get_image(image_id: str, image_store: ImageStore = Depends(get_image_store)):
    """Return the image bytes and delete them. A second request for the same id is a 404."""
    image = await image_store.get(image_id)
    if image is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Image not found or expired")
    return Response(content=image.data, media_type=image.mime_type, headers={"Cache-Control": "no-store"})
