"""
Error types for the collage variant renderer.

Provides specific exception types for the render pipeline's failure modes
and the context needed to report them to whoever triggered a render.
"""

from typing import Dict, List, Any


class CollageRenderError(Exception):
    """Base exception for all collage render errors."""

    http_status = 500

    def __init__(self, message: str, details: Dict[str, Any] = None, suggestions: List[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.suggestions = suggestions or []

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for JSON serialization."""
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'details': self.details,
            'suggestions': self.suggestions
        }


class ConfigurationError(CollageRenderError):
    """Raised when configuration is invalid or missing."""
    pass


class InputError(CollageRenderError):
    """Raised when an order cannot be rendered as submitted."""

    http_status = 400


class InvalidOrderError(InputError):
    """Raised when the order record has no usable member roster."""
    pass


class UnsupportedGridKindError(InputError):
    """Raised when an order asks for a grid kind the renderer does not know."""

    def __init__(self, grid_kind: str):
        super().__init__(
            f"Unsupported grid kind: {grid_kind}",
            details={'grid_kind': grid_kind},
            suggestions=["Use one of: square, hexagonal"]
        )


class MissingGridKindError(InputError):
    """Raised when an order has no grid kind selected."""

    def __init__(self, order_id: str):
        super().__init__(
            f"Order {order_id} has no grid kind selected",
            details={'order_id': order_id},
            suggestions=["Choose a square or hexagonal grid for the order before rendering"]
        )


class InsufficientPhotosError(InputError):
    """Raised when fewer than two members have photographs."""

    def __init__(self, found: int, required: int = 2):
        super().__init__(
            f"Cannot render a collage with fewer than two photographed participants "
            f"(found {found}, need at least {required})",
            details={'photographed_members': found, 'required': required},
            suggestions=["Ask more group members to upload a photo"]
        )


class OrderNotFoundError(CollageRenderError):
    """Raised when the order record does not exist."""

    http_status = 404

    def __init__(self, order_id: str):
        super().__init__(
            f"Order not found: {order_id}",
            details={'order_id': order_id}
        )


class ProcessingError(CollageRenderError):
    """Raised when the render pipeline fails."""
    pass


class ImageFetchError(ProcessingError):
    """Raised when a member photograph cannot be acquired."""
    pass


class RenderError(ProcessingError):
    """Raised when compositing a variant fails."""
    pass


class UploadError(ProcessingError):
    """Raised when the content store rejects a rendered variant."""

    def __init__(self, message: str, folder: str = None, status_code: int = None):
        super().__init__(
            message,
            details={'folder': folder, 'status_code': status_code},
            suggestions=[
                "Check the Cloudinary cloud name and upload preset",
                "Re-run the render with force=true once the content store is reachable"
            ]
        )


class TemplateGeometryError(CollageRenderError):
    """Raised when a hexagon template contains malformed geometry."""

    def __init__(self, message: str, template: str = None):
        super().__init__(
            message,
            details={'template': template},
            suggestions=["Re-export the hexagon template with plain <polygon> cells"]
        )


class PersistenceError(CollageRenderError):
    """Raised when a render record cannot be read or written."""
    pass


def error_summary(failed: int, total: int) -> str:
    """Human-readable summary of a partially failed job."""
    if failed == 0:
        return ""
    if failed == total:
        return f"All {total} variants failed"
    return f"{failed} variants failed"
