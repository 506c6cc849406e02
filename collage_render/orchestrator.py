"""
Render job orchestrator.

Drives one order from ``queued`` to ``completed``/``failed``: enumerates
square and hexagonal variants, fetches the roster's photos once, then
composites and uploads each variant in turn while recording per-variant
progress. Also provides the read projections used by pollers and the
variant picker.
"""

import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from loguru import logger

from collage_render.composite import (
    HexagonalCompositor, RectangularCompositor, canvas_for
)
from collage_render.config import AppConfig, get_config
from collage_render.errors import (
    InputError, MissingGridKindError, OrderNotFoundError, ProcessingError,
    TemplateGeometryError, UnsupportedGridKindError, error_summary
)
from collage_render.hexagon import resolve_hex_layout
from collage_render.image_fetch import ImageFetcher
from collage_render.layout import get_layout, sample_cell_size
from collage_render.models import (
    CachedOutput, GridKind, JobStatus, Order, RenderJob, Variant, VariantOutput,
    VariantState, VariantStatus
)
from collage_render.repository import RenderRepository
from collage_render.storage import ContentStore
from collage_render.variants import generate_grid_variants

NOT_STARTED = 'not_started'

# A job in one of these states already has (or had) a driver
ACTIVE_OR_DONE = (JobStatus.QUEUED, JobStatus.PROCESSING, JobStatus.COMPLETED)


class InlineExecutor(Executor):
    """Executor that runs submitted work synchronously (used in testing)."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


def create_executor(config: AppConfig) -> Executor:
    if config.TESTING:
        return InlineExecutor()
    return ThreadPoolExecutor(max_workers=config.RENDER_WORKERS, thread_name_prefix="render-job")


class RenderOrchestrator:
    """Owns the render job state machine for every order."""

    def __init__(self, repository: RenderRepository, content_store: ContentStore,
                 fetcher: ImageFetcher = None, config: AppConfig = None,
                 executor: Executor = None):
        self.config = config or get_config()
        self.repository = repository
        self.content_store = content_store
        self.fetcher = fetcher or ImageFetcher(self.config)
        self.executor = executor or create_executor(self.config)
        self.compositors = {
            GridKind.SQUARE: RectangularCompositor(self.config),
            GridKind.HEXAGONAL: HexagonalCompositor(self.config),
        }
        self._enqueue_lock = threading.Lock()

    # Triggering

    def enqueue_render(self, order_id: str, force: bool = False) -> Dict[str, Any]:
        """
        Queue a render for an order and return without waiting for it.

        A job that is already queued, processing or completed is left
        untouched unless ``force`` is set, which discards prior outputs first.
        """
        order = self._require_order(order_id)
        if order.resolved_grid_kind is None:
            if order.grid_kind:
                raise UnsupportedGridKindError(order.grid_kind)
            raise MissingGridKindError(order.id)

        with self._enqueue_lock:
            existing = self.repository.get_render_status(order.id)
            if existing and existing.status in ACTIVE_OR_DONE and not force:
                logger.info(f"Order {order.id} already {existing.status.value}, skipping")
                return {'status': existing.status.value, 'queued': False}

            if force:
                deleted = self.repository.delete_variant_outputs(order.id)
                logger.info(f"Forced re-render of order {order.id}, discarded {deleted} outputs")

            self.repository.upsert_render_status(order.id, RenderJob(order_id=order.id).model_dump())

        logger.info(f"Queued render for order {order.id}")
        try:
            self.executor.submit(self._drive, order.id)
        except RuntimeError as e:
            # Executor already shut down; a queued record would never be picked up
            logger.error(f"Cannot schedule render for order {order.id}: {e}")
            self.repository.upsert_render_status(order.id, {'status': JobStatus.FAILED, 'error': str(e)})
            raise ProcessingError(f"Cannot schedule render for order {order.id}: {e}") from e
        return {'status': JobStatus.QUEUED.value, 'queued': True}

    def _drive(self, order_id: str) -> Optional[RenderJob]:
        try:
            return self.run_job(order_id)
        except Exception:
            logger.exception(f"Background render job crashed for order {order_id}")
            raise

    # Job driver

    def run_job(self, order_id: str) -> Optional[RenderJob]:
        """Run a queued job to a terminal status."""
        start_time = time.time()
        try:
            job = self._run(order_id)
        except Exception as e:
            logger.error(f"Render job failed for order {order_id}: {e}")
            return self.repository.upsert_render_status(
                order_id, {'status': JobStatus.FAILED, 'error': str(e)}
            )

        logger.info(f"Render job {job.status.value} for order {order_id}: "
                    f"{job.completed_variants}/{job.total_variants} variants "
                    f"in {time.time() - start_time:.1f}s")
        return job

    def _run(self, order_id: str) -> RenderJob:
        self.repository.upsert_render_status(order_id, {'status': JobStatus.PROCESSING, 'error': None})
        order = self._require_order(order_id)

        square_variants = self.collect_variants(order, GridKind.SQUARE)
        hex_variants = self.collect_variants(order, GridKind.HEXAGONAL)
        variants = square_variants + hex_variants

        if not variants:
            logger.info(f"No variants to render for order {order_id}")
            return self.repository.upsert_render_status(order_id, {
                'status': JobStatus.COMPLETED,
                'total_variants': 0,
                'completed_variants': 0,
                'variants': [],
            })

        logger.info(f"Rendering {len(variants)} variants for order {order_id} "
                    f"({len(square_variants)} square, {len(hex_variants)} hexagonal)")

        self.repository.upsert_render_status(order_id, {
            'total_variants': len(variants),
            'completed_variants': 0,
            'variants': [self._pending_status(v) for v in variants],
        })
        self.repository.delete_variant_outputs(order_id)

        image_map = self.prefetch_images(order)

        completed = []
        failed = 0
        for position, variant in enumerate(variants, start=1):
            logger.debug(f"Rendering {variant.grid_kind.value} variant {position}/{len(variants)}: "
                         f"{variant.id} (center: {variant.center_member.name})")
            output = self.render_variant(order, variant, image_map)
            self.repository.upsert_variant_output(output)
            self.repository.update_variant_status(order_id, variant.id, {
                'status': output.status,
                'image_url': output.image_url or None,
                'error': output.error,
            })

            if output.status == VariantState.COMPLETED:
                completed.append(output)
                self.repository.upsert_render_status(order_id, {'completed_variants': len(completed)})
            else:
                failed += 1

        if completed:
            self.repository.patch_order_cached_outputs(order_id, [
                CachedOutput(variant_id=o.variant_id, image_url=o.image_url,
                             center_member_name=o.center_member_name, grid_kind=o.grid_kind)
                for o in completed
            ])

        return self.repository.upsert_render_status(order_id, {
            'status': JobStatus.FAILED if failed == len(variants) else JobStatus.COMPLETED,
            'completed_variants': len(completed),
            'error': error_summary(failed, len(variants)) or None,
        })

    def collect_variants(self, order: Order, grid_kind: GridKind) -> List[Variant]:
        """
        Variants of one grid kind, or an empty list when the order cannot be
        rendered on that grid.
        """
        if grid_kind == GridKind.HEXAGONAL:
            try:
                hex_layout = resolve_hex_layout(len(order.members), self.config.HEX_TEMPLATE_DIR,
                                                self.config.HEX_CENTER_MIN_VERTICES)
            except TemplateGeometryError as e:
                logger.error(f"Hexagon template for {len(order.members)} members is malformed: {e}")
                return []
            if hex_layout is None:
                return []

        try:
            return generate_grid_variants(order, grid_kind)
        except InputError as e:
            logger.warning(f"No {grid_kind.value} variants for order {order.id}: {e.message}")
            return []

    def prefetch_images(self, order: Order) -> Dict[str, Optional[bytes]]:
        """Fetch every roster photo once, sized for a regular square cell."""
        width, height = canvas_for(GridKind.SQUARE, len(order.members), self.config)
        cell_w, cell_h = sample_cell_size(get_layout(len(order.members)), width, height,
                                          self.config.CELL_GAP_PX)
        image_map = self.fetcher.fetch_all(order.members, cell_w, cell_h)
        missing = self.fetcher.missing_keys(image_map)
        if missing:
            logger.warning(f"Order {order.id}: {len(missing)} members will use placeholders")
        return image_map

    def render_variant(self, order: Order, variant: Variant,
                       image_map: Dict[str, Optional[bytes]]) -> VariantOutput:
        """Composite and upload one variant; failures are recorded on the output."""
        canvas = canvas_for(variant.grid_kind, len(order.members), self.config)
        record = {
            'order_id': order.id,
            'variant_id': variant.id,
            'grid_kind': variant.grid_kind,
            'center_member_id': variant.center_member.id,
            'center_member_name': variant.center_member.name,
        }

        try:
            data = self.compositors[variant.grid_kind].render(order, variant, image_map, canvas)
            folder = f"{self.config.CLOUDINARY_FOLDER}/{order.effective_id}/{variant.grid_kind.value}"
            upload = self.content_store.put(data, folder, public_id=variant.id)
        except Exception as e:
            logger.error(f"Failed {variant.grid_kind.value} variant {variant.id}: {e}")
            return VariantOutput(**record, status=VariantState.FAILED, error=str(e))

        logger.debug(f"Completed {variant.id} ({round(len(data) / 1024)}KB)")
        return VariantOutput(
            **record,
            image_url=upload.url,
            width=upload.width or canvas[0],
            height=upload.height or canvas[1],
            size_bytes=upload.size_bytes or len(data),
            format=upload.format or 'jpeg',
            status=VariantState.COMPLETED,
        )

    # Read projections

    def get_render_status(self, order_id: str) -> Dict[str, Any]:
        """Polling snapshot; always well-formed, even before the first render."""
        order = self.repository.get_order(order_id)
        key = order.id if order else order_id
        job = self.repository.get_render_status(key)

        if job is None:
            return {
                'orderId': key,
                'status': NOT_STARTED,
                'completedCount': 0,
                'failedCount': 0,
                'totalCount': 0,
                'perVariant': [],
                'error': None,
            }

        return {
            'orderId': key,
            'status': job.status.value,
            'completedCount': job.completed_variants,
            'failedCount': job.failed_variants,
            'totalCount': job.total_variants,
            'perVariant': [
                {
                    'variantId': v.variant_id,
                    'centerMemberId': v.center_member_id,
                    'centerMemberName': v.center_member_name,
                    'gridKind': v.grid_kind.value,
                    'status': v.status.value,
                    'imageUrl': v.image_url,
                    'error': v.error,
                }
                for v in job.variants
            ],
            'error': job.error,
            'updatedAt': job.updated_at.isoformat(),
        }

    def get_variants(self, order_id: str) -> Dict[str, Any]:
        """Variants of both grid kinds joined with their rendered image URLs."""
        order = self._require_order(order_id)

        urls = {
            o.variant_id: o.image_url
            for o in self.repository.list_variant_outputs(order.id, VariantState.COMPLETED)
            if o.image_url
        }
        if not urls:
            urls = {c.variant_id: c.image_url for c in order.cached_outputs}

        return {
            'orderId': order.id,
            'squareVariants': [self._project(v, urls) for v in self.collect_variants(order, GridKind.SQUARE)],
            'hexVariants': [self._project(v, urls) for v in self.collect_variants(order, GridKind.HEXAGONAL)],
            'renderedImageUrlsByVariantId': urls,
        }

    def get_render_order(self, order_id: str) -> Dict[str, Any]:
        """Order data an external render worker needs."""
        order = self._require_order(order_id)
        grid_kind = order.resolved_grid_kind
        return {
            'orderId': order.id,
            'clientOrderId': order.client_order_id,
            'gridKind': grid_kind.value if grid_kind else order.grid_kind,
            'members': [
                {
                    'id': m.id,
                    'name': m.name,
                    'photo': m.photo,
                    'memberRollNumber': m.roll_number,
                }
                for m in order.members
            ],
        }

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)

    # Helpers

    def _require_order(self, order_id: str) -> Order:
        order = self.repository.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    @staticmethod
    def _pending_status(variant: Variant) -> VariantStatus:
        return VariantStatus(
            variant_id=variant.id,
            center_member_id=variant.center_member.id,
            center_member_name=variant.center_member.name,
            grid_kind=variant.grid_kind,
        )

    @staticmethod
    def _project(variant: Variant, urls: Dict[str, str]) -> Dict[str, Any]:
        center = variant.center_member
        return {
            'variantId': variant.id,
            'gridKind': variant.grid_kind.value,
            'centerIndex': variant.center_index,
            'centerMemberId': center.id,
            'centerMemberName': center.name,
            'centerMemberPhoto': center.photo,
            'memberIds': [m.id for m in variant.members],
            'imageUrl': urls.get(variant.id),
        }
