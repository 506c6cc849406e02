#!/usr/bin/env python3
"""
Production deployment configuration for the Collage Variant Renderer.

This module provides production-ready WSGI server configuration,
environment setup, and deployment utilities.
"""

import os
import sys
from pathlib import Path
from typing import Any, Dict, List

from loguru import logger


def production_overrides() -> Dict[str, Any]:
    """Settings forced on in production, read from the environment."""
    return {
        'DEBUG': False,
        'TESTING': False,
        'STORAGE_BACKEND': os.environ.get('STORAGE_BACKEND', 'json'),
        'DATA_FOLDER': os.environ.get('DATA_FOLDER', '/var/lib/collage_render'),
        'LOG_FILE': os.environ.get('LOG_FILE', '/var/log/collage_render/app.log'),
        'LOG_LEVEL': os.environ.get('LOG_LEVEL', 'INFO'),
        'HEX_TEMPLATE_DIR': os.environ.get('HEX_TEMPLATE_DIR', '/opt/collage_render/assets/hexagon'),
        'RENDER_WORKERS': int(os.environ.get('RENDER_WORKERS', '2')),
    }


def create_production_app():
    """Create production Flask application with proper configuration."""
    # Set production environment
    os.environ['FLASK_ENV'] = 'production'

    # Import after setting environment
    from collage_render import create_app

    overrides = production_overrides()
    create_production_directories(overrides)

    app = create_app('production', overrides)

    # Console sink alongside the rotating file sink
    logger.add(sys.stdout, level=app.config.get('LOG_LEVEL', 'INFO'))

    return app


def create_production_directories(config: Dict[str, Any]):
    """Create required production directories."""
    directories = [
        config['DATA_FOLDER'],
        Path(config['LOG_FILE']).parent,
    ]

    for directory in directories:
        Path(directory).mkdir(parents=True, exist_ok=True)


def check_production_requirements() -> List[str]:
    """Check that production requirements are met."""
    errors = []

    # Check Python version
    if sys.version_info < (3, 9):
        errors.append("Python 3.9 or higher required")

    # Check environment variables
    required_env_vars = ['SECRET_KEY', 'CLOUDINARY_CLOUD_NAME']
    for var in required_env_vars:
        if not os.environ.get(var):
            errors.append(f"Environment variable {var} is required")

    if not (os.environ.get('CLOUDINARY_UPLOAD_PRESET') or os.environ.get('CLOUDINARY_API_KEY')):
        errors.append("CLOUDINARY_UPLOAD_PRESET or CLOUDINARY_API_KEY/CLOUDINARY_API_SECRET is required")

    # Check write permissions
    data_folder = os.environ.get('DATA_FOLDER', '/var/lib/collage_render')
    try:
        test_file = Path(data_folder) / 'test_write'
        test_file.parent.mkdir(parents=True, exist_ok=True)
        test_file.write_text('test')
        test_file.unlink()
    except OSError:
        errors.append(f"No write permission to data folder: {data_folder}")

    return errors


if __name__ == '__main__':
    # Check requirements
    errors = check_production_requirements()
    if errors:
        print("❌ Production requirements not met:")
        for error in errors:
            print(f"  - {error}")
        sys.exit(1)

    print("✅ Production requirements check passed")

    from waitress import serve

    app = create_production_app()

    host = os.environ.get('HOST', '0.0.0.0')
    port = int(os.environ.get('PORT', '8000'))
    threads = int(os.environ.get('THREADS', '4'))

    print(f"🚀 Starting Collage Variant Renderer on {host}:{port}")
    print(f"   Threads: {threads}")
    print(f"   Render workers: {app.config.get('RENDER_WORKERS')}")

    try:
        serve(
            app,
            host=host,
            port=port,
            threads=threads,
            channel_timeout=120,
            cleanup_interval=30,
            connection_limit=1000,
            url_scheme='https' if os.environ.get('HTTPS', '').lower() == 'true' else 'http'
        )
    except KeyboardInterrupt:
        print("\n👋 Shutting down gracefully...")
        app.extensions['collage_render'].shutdown(wait=False)
