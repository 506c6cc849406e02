"""
Content stores for rendered variants.

A content store takes encoded image bytes and returns a stable URL. The
Cloudinary store is used whenever a cloud name is configured; otherwise
rendered variants are kept inline as data URIs.
"""

import base64
import io
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError
from PIL import Image
from loguru import logger

from collage_render.config import AppConfig, get_config
from collage_render.errors import ConfigurationError, UploadError


@dataclass
class UploadResult:
    url: str
    size_bytes: int
    width: Optional[int] = None
    height: Optional[int] = None
    format: str = "jpeg"


def measure_image(data: bytes):
    """(width, height, format) of encoded image bytes."""
    with Image.open(io.BytesIO(data)) as image:
        return image.width, image.height, (image.format or "jpeg").lower()


class ContentStore(ABC):
    """Upload sink for rendered variants."""

    @abstractmethod
    def put(self, data: bytes, folder: str, public_id: str = None) -> UploadResult:
        """Store encoded bytes and return where they can be read back."""


class CloudinaryContentStore(ContentStore):
    """Uploads to Cloudinary, unsigned with a preset or signed with API credentials."""

    def __init__(self, config: AppConfig = None):
        config = config or get_config()
        if not config.cloudinary_configured:
            raise ConfigurationError(
                "Cloudinary is not configured",
                suggestions=["Set CLOUDINARY_CLOUD_NAME and CLOUDINARY_UPLOAD_PRESET"]
            )

        self.cloud_name = config.CLOUDINARY_CLOUD_NAME
        self.upload_preset = config.CLOUDINARY_UPLOAD_PRESET
        self.signed = bool(config.CLOUDINARY_API_KEY and config.CLOUDINARY_API_SECRET)

        cloudinary.config(
            cloud_name=config.CLOUDINARY_CLOUD_NAME,
            api_key=config.CLOUDINARY_API_KEY,
            api_secret=config.CLOUDINARY_API_SECRET,
            secure=True,
        )
        logger.info(f"Cloudinary content store ready (cloud={self.cloud_name}, "
                    f"{'signed' if self.signed else 'unsigned'})")

    def put(self, data: bytes, folder: str, public_id: str = None) -> UploadResult:
        options = {'folder': folder, 'resource_type': 'image'}
        try:
            if self.signed:
                if public_id:
                    options.update(public_id=public_id, overwrite=True, unique_filename=False)
                result = cloudinary.uploader.upload(io.BytesIO(data), **options)
            else:
                result = cloudinary.uploader.unsigned_upload(io.BytesIO(data), self.upload_preset, **options)
        except CloudinaryError as e:
            raise UploadError(f"Cloudinary upload failed: {e}", folder=folder,
                              status_code=getattr(e, 'http_code', None))

        url = result.get('secure_url') or result.get('url')
        if not url:
            raise UploadError("Cloudinary response did not include a URL", folder=folder)

        logger.debug(f"Uploaded {len(data)} bytes to {folder}: {url}")
        return UploadResult(
            url=url,
            size_bytes=result.get('bytes', len(data)),
            width=result.get('width'),
            height=result.get('height'),
            format=result.get('format', 'jpeg'),
        )


class InlineContentStore(ContentStore):
    """Keeps rendered variants as data URIs on the output record."""

    def put(self, data: bytes, folder: str, public_id: str = None) -> UploadResult:
        try:
            width, height, image_format = measure_image(data)
        except OSError as e:
            raise UploadError(f"Rendered image is not decodable: {e}", folder=folder)

        mime = 'jpeg' if image_format in ('jpeg', 'jpg') else image_format
        encoded = base64.b64encode(data).decode('ascii')
        return UploadResult(
            url=f"data:image/{mime};base64,{encoded}",
            size_bytes=len(data),
            width=width,
            height=height,
            format=image_format,
        )


def create_content_store(config: AppConfig = None) -> ContentStore:
    """Factory function for the configured content store."""
    config = config or get_config()
    if config.cloudinary_configured:
        return CloudinaryContentStore(config)
    logger.warning("Cloudinary not configured, rendered variants will be stored inline")
    return InlineContentStore()
