"""
Persistence adapters for orders, render jobs and variant outputs.

Both adapters store plain JSON-compatible documents in three collections:
``orders``, ``render_status`` (keyed by order id) and ``variant_outputs``
(keyed by order id + variant id). Record-level logic lives in
``RenderRepository``; subclasses only provide document primitives.
"""

import copy
import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

from loguru import logger

from collage_render.config import AppConfig, get_config
from collage_render.errors import ConfigurationError, PersistenceError
from collage_render.models import (
    CachedOutput, Order, RenderJob, VariantOutput, VariantState, utcnow
)

ORDERS = 'orders'
RENDER_STATUS = 'render_status'
VARIANT_OUTPUTS = 'variant_outputs'

Document = Dict[str, Any]


def _output_key(order_id: str, variant_id: str) -> str:
    return f"{order_id}/{variant_id}"


class RenderRepository(ABC):
    """Record-level access to the document store."""

    def __init__(self):
        self._lock = threading.RLock()

    # Document primitives

    @abstractmethod
    def _read(self, collection: str, key: str) -> Optional[Document]:
        ...

    @abstractmethod
    def _write(self, collection: str, key: str, document: Document) -> None:
        ...

    @abstractmethod
    def _delete(self, collection: str, key: str) -> bool:
        ...

    @abstractmethod
    def _scan(self, collection: str, prefix: str = "") -> Iterable[Document]:
        ...

    # Orders

    def get_order(self, order_id: str) -> Optional[Order]:
        """Order by id, falling back to a client order id match."""
        with self._lock:
            document = self._read(ORDERS, order_id)
            if document is None:
                document = next(
                    (d for d in self._scan(ORDERS) if d.get('clientOrderId') == order_id),
                    None
                )
        if document is None:
            return None
        return Order.model_validate(document)

    def save_order(self, order: Order) -> Order:
        with self._lock:
            self._write(ORDERS, order.id, order.model_dump(mode='json', by_alias=True))
        return order

    def patch_order_cached_outputs(self, order_id: str, outputs: List[CachedOutput]) -> None:
        """Replace the order's denormalized output references."""
        with self._lock:
            order = self.get_order(order_id)
            if order is None:
                logger.warning(f"Cannot cache outputs, order {order_id} not found")
                return
            order.cached_outputs = list(outputs)
            self.save_order(order)

    # Render jobs

    def get_render_status(self, order_id: str) -> Optional[RenderJob]:
        with self._lock:
            document = self._read(RENDER_STATUS, order_id)
        if document is None:
            return None
        return RenderJob.model_validate(document)

    def upsert_render_status(self, order_id: str, patch: Dict[str, Any]) -> RenderJob:
        """Merge a patch into the job record, creating it when absent."""
        with self._lock:
            job = self.get_render_status(order_id) or RenderJob(order_id=order_id)
            merged = job.model_dump()
            merged.update(patch)
            merged['order_id'] = order_id
            merged['updated_at'] = utcnow()
            job = RenderJob.model_validate(merged)
            self._write(RENDER_STATUS, order_id, job.model_dump(mode='json'))
            return job

    def delete_render_status(self, order_id: str) -> bool:
        with self._lock:
            return self._delete(RENDER_STATUS, order_id)

    def update_variant_status(self, order_id: str, variant_id: str,
                              patch: Dict[str, Any]) -> Optional[RenderJob]:
        """Patch one variant entry of a job; None when job or variant is unknown."""
        with self._lock:
            job = self.get_render_status(order_id)
            if job is None:
                return None

            for index, variant in enumerate(job.variants):
                if variant.variant_id == variant_id:
                    merged = variant.model_dump()
                    merged.update(patch)
                    job.variants[index] = type(variant).model_validate(merged)
                    break
            else:
                logger.warning(f"Order {order_id}: unknown variant {variant_id}")
                return None

            job.updated_at = utcnow()
            self._write(RENDER_STATUS, order_id, job.model_dump(mode='json'))
            return job

    # Variant outputs

    def upsert_variant_output(self, output: VariantOutput) -> VariantOutput:
        with self._lock:
            self._write(VARIANT_OUTPUTS, _output_key(output.order_id, output.variant_id),
                        output.model_dump(mode='json'))
        return output

    def list_variant_outputs(self, order_id: str,
                             status: Optional[VariantState] = None) -> List[VariantOutput]:
        with self._lock:
            documents = list(self._scan(VARIANT_OUTPUTS, prefix=f"{order_id}/"))
        outputs = [VariantOutput.model_validate(d) for d in documents]
        if status is not None:
            outputs = [o for o in outputs if o.status == VariantState(status)]
        return sorted(outputs, key=lambda o: o.variant_id)

    def delete_variant_outputs(self, order_id: str) -> int:
        with self._lock:
            outputs = self.list_variant_outputs(order_id)
            for output in outputs:
                self._delete(VARIANT_OUTPUTS, _output_key(order_id, output.variant_id))
        if outputs:
            logger.debug(f"Deleted {len(outputs)} variant outputs for order {order_id}")
        return len(outputs)


class InMemoryRepository(RenderRepository):
    """Dictionary-backed store; documents are deep-copied in and out."""

    def __init__(self):
        super().__init__()
        self._collections: Dict[str, Dict[str, Document]] = {
            ORDERS: {}, RENDER_STATUS: {}, VARIANT_OUTPUTS: {}
        }

    def _read(self, collection, key):
        document = self._collections[collection].get(key)
        return copy.deepcopy(document) if document is not None else None

    def _write(self, collection, key, document):
        self._collections[collection][key] = copy.deepcopy(document)

    def _delete(self, collection, key):
        return self._collections[collection].pop(key, None) is not None

    def _scan(self, collection, prefix=""):
        return [copy.deepcopy(d) for k, d in sorted(self._collections[collection].items())
                if k.startswith(prefix)]


class JsonFileRepository(RenderRepository):
    """One JSON file per document under a data folder."""

    def __init__(self, data_folder: str):
        super().__init__()
        self.root = Path(data_folder)
        for collection in (ORDERS, RENDER_STATUS, VARIANT_OUTPUTS):
            (self.root / collection).mkdir(parents=True, exist_ok=True)
        logger.info(f"JSON repository at {self.root.resolve()}")

    @staticmethod
    def _safe(part: str) -> str:
        """Percent-encoded file name for a key part; distinct keys never share a file."""
        if not part:
            # A bare "%" is never produced by quote()
            return '%'
        encoded = quote(part, safe='')
        if not encoded.strip('.'):
            encoded = encoded.replace('.', '%2E')
        return encoded

    def _path(self, collection: str, key: str) -> Path:
        if collection == VARIANT_OUTPUTS:
            order_id, variant_id = key.rsplit('/', 1)
            return self.root / collection / self._safe(order_id) / f"{self._safe(variant_id)}.json"
        return self.root / collection / f"{self._safe(key)}.json"

    def _read(self, collection, key):
        return self._load(self._path(collection, key))

    def _load(self, path: Path) -> Optional[Document]:
        if not path.exists():
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Cannot read {path}: {e}", details={'path': str(path)})

    def _write(self, collection, key, document):
        path = self._path(collection, key)
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix='.tmp')
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(document, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, path)
            tmp_name = None
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Cannot write {path}: {e}", details={'path': str(path)})
        finally:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)

    def _delete(self, collection, key):
        path = self._path(collection, key)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise PersistenceError(f"Cannot delete {path}: {e}", details={'path': str(path)})

    def _scan(self, collection, prefix=""):
        base = self.root / collection
        if prefix:
            base = base / self._safe(prefix.rstrip('/'))
        if not base.exists():
            return []
        return [self._load(p) for p in sorted(base.glob('*.json'))]


def create_repository(config: AppConfig = None) -> RenderRepository:
    """Factory function for the configured persistence backend."""
    config = config or get_config()
    backend = config.STORAGE_BACKEND.lower()
    if backend == 'memory':
        return InMemoryRepository()
    if backend == 'json':
        return JsonFileRepository(config.DATA_FOLDER)
    raise ConfigurationError(
        f"Unknown storage backend: {config.STORAGE_BACKEND}",
        suggestions=["Set STORAGE_BACKEND to 'json' or 'memory'"]
    )
