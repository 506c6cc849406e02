"""
Pytest configuration and fixtures for Collage Variant Renderer tests.

Provides shared fixtures, test configuration, and order/photo builders
for running tests across the entire application.
"""

import base64
import io
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from PIL import Image

from collage_render import create_app
from collage_render.config import AppConfig, set_config
from collage_render.hexagon import clear_template_cache
from collage_render.models import Order
from collage_render.orchestrator import InlineExecutor, RenderOrchestrator
from collage_render.image_fetch import ImageFetcher
from collage_render.repository import InMemoryRepository
from collage_render.storage import InlineContentStore


PROJECT_ROOT = Path(__file__).parent.parent
HEX_TEMPLATE_DIR = PROJECT_ROOT / 'assets' / 'hexagon'

PALETTE = [
    (220, 40, 40), (40, 180, 60), (40, 60, 220), (230, 200, 30),
    (160, 60, 200), (30, 190, 190), (240, 130, 20), (120, 120, 120),
]


@pytest.fixture
def test_config(tmp_path):
    """Small canvases keep composites fast; everything else matches production."""
    return AppConfig(
        SECRET_KEY='test-key',
        FLASK_ENV='testing',
        DEBUG=False,
        TESTING=True,
        LOG_LEVEL='DEBUG',
        LOG_FILE=str(tmp_path / 'logs' / 'test.log'),
        STORAGE_BACKEND='memory',
        DATA_FOLDER=str(tmp_path / 'data'),
        HEX_TEMPLATE_DIR=str(HEX_TEMPLATE_DIR),
        SQUARE_CANVAS_SMALL=(240, 405),
        SQUARE_CANVAS_LARGE=(255, 405),
        HEX_CANVAS=(240, 380),
        IMAGE_FETCH_TIMEOUT_S=2.0,
    )


@pytest.fixture(autouse=True)
def use_test_config(test_config):
    """Install the test configuration as the global one."""
    set_config(test_config)
    clear_template_cache()
    yield
    set_config(None)


@pytest.fixture(scope='session')
def hex_template_dir():
    """Directory holding the bundled hexagon templates."""
    return str(HEX_TEMPLATE_DIR)


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def content_store():
    return InlineContentStore()


@pytest.fixture
def orchestrator(test_config, repository, content_store):
    """Orchestrator that runs jobs synchronously."""
    return RenderOrchestrator(
        repository=repository,
        content_store=content_store,
        fetcher=ImageFetcher(test_config),
        config=test_config,
        executor=InlineExecutor(),
    )


@pytest.fixture
def app(test_config, repository, content_store):
    """Create and configure a test Flask application."""
    app = create_app('testing', overrides=test_config.model_dump(),
                     repository=repository, content_store=content_store)
    yield app
    app.extensions['collage_render'].shutdown()


@pytest.fixture
def client(app):
    """Create a test client for the Flask application."""
    return app.test_client()


class OrderFactory:
    """Builds order documents with inline photos."""

    @staticmethod
    def photo_bytes(color=(200, 50, 50), size=(40, 48), image_format='PNG') -> bytes:
        buffer = io.BytesIO()
        Image.new('RGB', size, color).save(buffer, image_format)
        return buffer.getvalue()

    @classmethod
    def photo_uri(cls, color=(200, 50, 50)) -> str:
        encoded = base64.b64encode(cls.photo_bytes(color)).decode('ascii')
        return f"data:image/png;base64,{encoded}"

    @classmethod
    def members(cls, count: int, photographed: Optional[int] = None) -> List[Dict[str, Any]]:
        """``count`` members; the first ``photographed`` (default all) have photos."""
        if photographed is None:
            photographed = count
        return [
            {
                'id': f"m{i}",
                'name': f"Member {i}",
                'memberRollNumber': str(100 + i),
                'photo': cls.photo_uri(PALETTE[i % len(PALETTE)]) if i < photographed else '',
            }
            for i in range(count)
        ]

    @classmethod
    def document(cls, order_id: str = 'order-1', count: int = 5, photographed: Optional[int] = None,
                 grid: Optional[str] = 'square', client_order_id: Optional[str] = None) -> Dict[str, Any]:
        return {
            '_id': order_id,
            'clientOrderId': client_order_id,
            'gridTemplate': grid,
            'members': cls.members(count, photographed),
        }

    @classmethod
    def order(cls, **kwargs) -> Order:
        return Order.model_validate(cls.document(**kwargs))


@pytest.fixture
def order_factory():
    """Provide the OrderFactory class as a fixture."""
    return OrderFactory


@pytest.fixture
def saved_order(repository, order_factory):
    """A five-member square order with every member photographed."""
    return repository.save_order(order_factory.order(order_id='order-1', count=5))


class StreamedResponse:
    """Stand-in for a ``requests`` response opened with ``stream=True``."""

    class _Raw:
        def __init__(self, body: bytes):
            self._buffer = io.BytesIO(body)

        def read1(self, amt: int = -1, decode_content: bool = None) -> bytes:
            return self._buffer.read1(amt)

    def __init__(self, body: bytes = b'', status_code: int = 200):
        self.status_code = status_code
        self.ok = status_code < 400
        self.raw = self._Raw(body)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False


@pytest.fixture
def streamed_response():
    """Provide the StreamedResponse class as a fixture."""
    return StreamedResponse
