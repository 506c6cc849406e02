"""
Unit tests for content stores.

The Cloudinary SDK is mocked; no uploads leave the test process.
"""

import base64
import io
from unittest.mock import ANY, patch

import pytest
from cloudinary.exceptions import Error as CloudinaryError
from PIL import Image

from collage_render.config import AppConfig
from collage_render.errors import ConfigurationError, UploadError
from collage_render.storage import (
    CloudinaryContentStore, InlineContentStore, create_content_store
)


def jpeg_bytes(size=(30, 20)):
    buffer = io.BytesIO()
    Image.new('RGB', size, (10, 120, 200)).save(buffer, 'JPEG', quality=85)
    return buffer.getvalue()


class TestInlineContentStore:

    def test_put_returns_data_uri(self):
        data = jpeg_bytes()
        result = InlineContentStore().put(data, 'center-variants/o/square')

        assert result.url.startswith('data:image/jpeg;base64,')
        assert base64.b64decode(result.url.split(',', 1)[1]) == data
        assert (result.width, result.height) == (30, 20)
        assert result.size_bytes == len(data)
        assert result.format == 'jpeg'

    def test_rejects_undecodable_bytes(self):
        with pytest.raises(UploadError):
            InlineContentStore().put(b'not an image', 'center-variants/o/square')


class TestCloudinaryContentStore:

    def unsigned_config(self):
        return AppConfig(CLOUDINARY_CLOUD_NAME='demo', CLOUDINARY_UPLOAD_PRESET='collages')

    def signed_config(self):
        return AppConfig(CLOUDINARY_CLOUD_NAME='demo', CLOUDINARY_API_KEY='key',
                         CLOUDINARY_API_SECRET='secret')

    def test_unsigned_upload(self):
        with patch('collage_render.storage.cloudinary') as sdk:
            sdk.uploader.unsigned_upload.return_value = {
                'secure_url': 'https://res.cloudinary.com/demo/image/upload/v1/a.jpg',
                'bytes': 1234, 'width': 1200, 'height': 2025, 'format': 'jpg',
            }
            store = CloudinaryContentStore(self.unsigned_config())
            result = store.put(b'jpeg', 'center-variants/o/square', public_id='square-variant-a')

        sdk.config.assert_called_once()
        sdk.uploader.unsigned_upload.assert_called_once_with(
            ANY, 'collages', folder='center-variants/o/square', resource_type='image'
        )
        assert result.url == 'https://res.cloudinary.com/demo/image/upload/v1/a.jpg'
        assert (result.width, result.height, result.size_bytes) == (1200, 2025, 1234)

    def test_signed_upload_uses_public_id(self):
        with patch('collage_render.storage.cloudinary') as sdk:
            sdk.uploader.upload.return_value = {'secure_url': 'https://x/a.jpg'}
            result = CloudinaryContentStore(self.signed_config()).put(
                b'jpeg', 'center-variants/o/hexagonal', public_id='hexagonal-variant-a')

        kwargs = sdk.uploader.upload.call_args[1]
        assert kwargs['public_id'] == 'hexagonal-variant-a'
        assert kwargs['overwrite'] is True
        assert result.size_bytes == 4

    def test_sdk_error_becomes_upload_error(self):
        with patch('collage_render.storage.cloudinary') as sdk:
            sdk.uploader.unsigned_upload.side_effect = CloudinaryError("Upload preset not found")
            store = CloudinaryContentStore(self.unsigned_config())

            with pytest.raises(UploadError) as exc_info:
                store.put(b'jpeg', 'center-variants/o/square')

        assert "Upload preset not found" in str(exc_info.value)
        assert exc_info.value.details['folder'] == 'center-variants/o/square'

    def test_response_without_url(self):
        with patch('collage_render.storage.cloudinary') as sdk:
            sdk.uploader.unsigned_upload.return_value = {}
            with pytest.raises(UploadError):
                CloudinaryContentStore(self.unsigned_config()).put(b'jpeg', 'f')

    def test_requires_configuration(self):
        with pytest.raises(ConfigurationError):
            CloudinaryContentStore(AppConfig())


class TestCreateContentStore:

    def test_inline_when_unconfigured(self):
        assert isinstance(create_content_store(AppConfig()), InlineContentStore)

    def test_cloudinary_when_configured(self):
        with patch('collage_render.storage.cloudinary'):
            store = create_content_store(
                AppConfig(CLOUDINARY_CLOUD_NAME='demo', CLOUDINARY_UPLOAD_PRESET='collages'))
        assert isinstance(store, CloudinaryContentStore)
