"""
Flask routes for the Collage Variant Renderer
Trigger, poll and read rendered center variants
"""

from flask import Blueprint, request, current_app, jsonify
from loguru import logger

from .errors import CollageRenderError


bp = Blueprint('render', __name__)

TRUTHY = ('1', 'true', 'yes', 'on')


def get_orchestrator():
    return current_app.extensions['collage_render']


def _force_requested() -> bool:
    if request.args.get('force', '').strip().lower() in TRUTHY:
        return True
    payload = request.get_json(silent=True) or {}
    return bool(payload.get('force')) if isinstance(payload, dict) else False


@bp.route('/render/ensure/<order_id>', methods=['POST'])
def ensure_render(order_id):
    """Queue a render for an order; returns immediately"""
    force = _force_requested()
    result = get_orchestrator().enqueue_render(order_id, force=force)
    logger.info(f"Ensure render {order_id} (force={force}): {result}")
    return jsonify(result), 202


@bp.route('/render/status/<order_id>', methods=['GET'])
def render_status(order_id):
    """Poll render progress"""
    return jsonify(get_orchestrator().get_render_status(order_id))


@bp.route('/render/variants/<order_id>', methods=['GET'])
def render_variants(order_id):
    """Variants with rendered image URLs"""
    return jsonify(get_orchestrator().get_variants(order_id))


@bp.route('/render/order/<order_id>', methods=['GET'])
def render_order(order_id):
    """Order data for external render workers"""
    return jsonify(get_orchestrator().get_render_order(order_id))


@bp.route('/health', methods=['GET'])
def health():
    return jsonify({'status': 'ok'})


@bp.errorhandler(CollageRenderError)
def handle_render_error(error):
    if error.http_status >= 500:
        logger.error(f"{error.__class__.__name__}: {error.message}")
    else:
        logger.warning(f"{error.__class__.__name__}: {error.message}")
    return jsonify(error.to_dict()), error.http_status
