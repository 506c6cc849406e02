"""
Collage Variant Renderer - Flask Application Factory
Renders one group-photo collage per candidate center member for an order
"""

import os
from pathlib import Path
from flask import Flask
from loguru import logger
from dotenv import load_dotenv

from .config import load_config, set_config


def create_app(config_name=None, overrides=None, repository=None, content_store=None, fetcher=None):
    """Flask application factory"""

    # Load environment variables
    load_dotenv()

    app = Flask(__name__)

    # Load configuration
    environment = config_name or os.getenv('FLASK_ENV', 'development')
    config = load_config(environment, overrides)
    set_config(config)
    app.config.update(config.model_dump())

    # Configure logging
    setup_logging(app)

    # Wire the render services
    setup_services(app, config, repository, content_store, fetcher)

    # Register blueprints
    from . import routes
    app.register_blueprint(routes.bp)

    logger.info(f"Collage Variant Renderer initialized in {environment} mode")

    return app


def setup_logging(app):
    """Configure loguru logging"""
    log_level = app.config.get('LOG_LEVEL', 'INFO')
    log_file = app.config.get('LOG_FILE', 'logs/app.log')

    # Ensure logs directory exists
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    logger.add(
        log_file,
        rotation="1 day",
        retention="30 days",
        level=log_level,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} | {message}"
    )


def setup_services(app, config, repository=None, content_store=None, fetcher=None):
    """Build the orchestrator and its collaborators"""
    from .image_fetch import ImageFetcher
    from .orchestrator import RenderOrchestrator
    from .repository import create_repository
    from .storage import create_content_store

    orchestrator = RenderOrchestrator(
        repository=repository or create_repository(config),
        content_store=content_store or create_content_store(config),
        fetcher=fetcher or ImageFetcher(config),
        config=config,
    )
    app.extensions['collage_render'] = orchestrator
    return orchestrator
