"""
Proof-of-delivery photo storage on Cloudinary.

When the blob store is unavailable the photo is handed back as an inline
data URL so the rider can still complete the delivery.
"""

import asyncio
import base64
import binascii
import logging
import re
import time
import uuid
from typing import Any, Dict

import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError

from app.config import Settings
from app.exceptions import BadRequestError

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = re.compile(r"^data:image/\w+;base64,")


def configure_cloudinary(settings: Settings) -> bool:
    """Configure the Cloudinary SDK. Returns False when credentials are missing."""
    if not settings.cloudinary_configured:
        logger.warning("Cloudinary not configured - POD photos will be stored inline")
        return False

    cloudinary.config(
        cloud_name=settings.cloudinary_cloud_name,
        api_key=settings.cloudinary_api_key,
        api_secret=settings.cloudinary_api_secret,
        secure=True,
    )
    return True


def decode_photo(photo_base64: str) -> bytes:
    """Strip an optional data URL prefix and decode."""
    data = DATA_URL_PREFIX.sub("", (photo_base64 or "").strip())
    if not data:
        raise BadRequestError("Photo data is required")
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise BadRequestError("Invalid photo data")


class StorageService:
    """Uploads proof-of-delivery photos."""

    def __init__(self, settings: Settings):
        self.settings = settings

    async def upload_pod(self, order_id: uuid.UUID, photo_base64: str) -> Dict[str, Any]:
        raw = decode_photo(photo_base64)
        encoded = base64.b64encode(raw).decode("ascii")
        data_url = f"data:image/jpeg;base64,{encoded}"
        stamp = int(time.time() * 1000)
        file_name = f"pod/{order_id}/{stamp}.jpg"

        if not self.settings.cloudinary_configured:
            return self._inline(data_url, "Storage not configured. Photo stored as base64 fallback.")

        try:
            # SDK is blocking
            response = await asyncio.to_thread(
                cloudinary.uploader.upload,
                data_url,
                folder=self.settings.pod_upload_folder,
                public_id=f"{order_id}/{stamp}",
                resource_type="image",
                overwrite=True,
            )
        except (CloudinaryError, OSError) as e:
            logger.error(f"POD upload failed for order {order_id}: {e}")
            return self._inline(data_url, "Photo upload failed. Photo stored as base64 fallback.")

        photo_url = response.get("secure_url")
        if not photo_url:
            logger.error(f"POD upload for order {order_id} returned no URL")
            return self._inline(data_url, "Photo upload failed. Photo stored as base64 fallback.")

        logger.info(f"POD photo uploaded for order {order_id}: {photo_url}")
        return {
            "success": True,
            "photoUrl": photo_url,
            "fileName": file_name,
        }

    @staticmethod
    def _inline(data_url: str, warning: str) -> Dict[str, Any]:
        return {
            "success": True,
            "photoUrl": data_url,
            "fallbackToBase64": True,
            "warning": warning,
        }
