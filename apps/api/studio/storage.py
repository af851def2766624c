"""
Transient image blob store.

Progress streams never carry image bytes inline: the finished image is parked
here and the client fetches it once by id. ``get`` is destructive, and
anything not fetched within the TTL is swept.
"""

import logging
import random
import string
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import redis.asyncio as redis

from .core.config import settings
from .middleware.metrics import set_stored_images

logger = logging.getLogger(__name__)


@dataclass
class StoredImage:
    data: bytes
    mime_type: str = "image/png"
    created_at: float = 0.0


def new_image_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"img_{int(time.time() * 1000)}_{suffix}"


class ImageStore(ABC):
    """put(bytes) -> id; get(id) -> bytes once; entries expire after the TTL."""

    @abstractmethod
    async def put(self, data: bytes, mime_type: str = "image/png") -> str:
        ...

    @abstractmethod
    async def get(self, image_id: str) -> Optional[StoredImage]:
        """Return and remove the image, or None when absent or expired."""

    @abstractmethod
    async def sweep(self) -> int:
        """Delete expired entries. Returns how many were removed."""

    async def close(self) -> None:
        return None


class MemoryImageStore(ImageStore):
    """In-process store; expired entries are removed by the sweep job."""

    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.IMAGE_STORE_TTL_SECONDS
        self._clock = clock
        self._images: Dict[str, StoredImage] = {}

    def __len__(self) -> int:
        return len(self._images)

    def _expired(self, image: StoredImage, now: float) -> bool:
        return now - image.created_at > self.ttl_seconds

    async def put(self, data: bytes, mime_type: str = "image/png") -> str:
        image_id = new_image_id()
        self._images[image_id] = StoredImage(data=data, mime_type=mime_type, created_at=self._clock())
        set_stored_images(len(self._images))
        logger.info(f"Stored image {image_id} ({len(data)} bytes)")
        return image_id

    async def get(self, image_id: str) -> Optional[StoredImage]:
        image = self._images.pop(image_id, None)
        set_stored_images(len(self._images))
        if image is None:
            logger.warning(f"Image {image_id} not found")
            return None
        if self._expired(image, self._clock()):
            logger.info(f"Image {image_id} expired before retrieval")
            return None
        logger.info(f"Retrieved and deleted image {image_id}")
        return image

    async def sweep(self) -> int:
        now = self._clock()
        expired = [image_id for image_id, image in self._images.items() if self._expired(image, now)]
        for image_id in expired:
            del self._images[image_id]
        set_stored_images(len(self._images))
        return len(expired)


class RedisImageStore(ImageStore):
    """Redis-backed store; key expiry replaces the sweep."""

    KEY_PREFIX = "studio:image:"

    def __init__(self, url: Optional[str] = None, ttl_seconds: Optional[int] = None, client=None):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.IMAGE_STORE_TTL_SECONDS
        self.redis = client if client is not None else redis.from_url(url or settings.REDIS_URL)

    def _key(self, image_id: str) -> str:
        return f"{self.KEY_PREFIX}{image_id}"

    async def put(self, data: bytes, mime_type: str = "image/png") -> str:
        image_id = new_image_id()
        key = self._key(image_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(key, mapping={"data": data, "mime_type": mime_type})
            pipe.expire(key, self.ttl_seconds)
            await pipe.execute()
        logger.info(f"Stored image {image_id} in Redis ({len(data)} bytes)")
        return image_id

    async def get(self, image_id: str) -> Optional[StoredImage]:
        key = self._key(image_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hgetall(key)
            pipe.delete(key)
            fields, _ = await pipe.execute()
        if not fields:
            logger.warning(f"Image {image_id} not found in Redis")
            return None
        mime_type = fields.get(b"mime_type", b"image/png")
        return StoredImage(data=fields[b"data"], mime_type=mime_type.decode("utf-8"))

    async def sweep(self) -> int:
        return 0

    async def close(self) -> None:
        await self.redis.aclose()
        logger.info("Disconnected image store from Redis")


def build_image_store() -> ImageStore:
    if settings.REDIS_URL:
        logger.info("Image store: Redis")
        return RedisImageStore()
    logger.info("Image store: in-process")
    return MemoryImageStore()
