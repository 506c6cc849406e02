#!/usr/bin/env python3
"""
Collage Variant Renderer - Development Runner
Run this script to start the development server
"""

import os
import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

# Set environment defaults
os.environ.setdefault('FLASK_APP', 'collage_render')
os.environ.setdefault('FLASK_ENV', 'development')

from collage_render import create_app
from collage_render.hexagon import available_template_counts


def main():
    """Main entry point"""
    print("=" * 60)
    print("Collage Variant Renderer - Development Server")
    print("=" * 60)

    # Create and configure the app
    app = create_app()

    # Print startup info
    print(f"Environment: {app.config.get('FLASK_ENV', 'unknown')}")
    print(f"Debug mode: {app.config.get('DEBUG', False)}")
    print(f"Log level: {app.config.get('LOG_LEVEL', 'INFO')}")
    print(f"Storage backend: {app.config.get('STORAGE_BACKEND')} ({app.config.get('DATA_FOLDER')})")

    if not Path('config/settings.yaml').exists():
        print("⚠️  Missing config file: config/settings.yaml (using defaults)")

    counts = available_template_counts(app.config.get('HEX_TEMPLATE_DIR'))
    if counts:
        print(f"Hexagon templates: {', '.join(str(c) for c in counts)} members")
    else:
        print("⚠️  No hexagon templates found, only square variants will render")

    if not app.config.get('CLOUDINARY_CLOUD_NAME'):
        print("⚠️  Cloudinary not configured, variants are stored inline")

    print("-" * 60)
    print("Starting development server...")
    print("Trigger a render: POST http://localhost:5000/render/ensure/<order_id>")
    print("Press Ctrl+C to stop")
    print("-" * 60)

    # Reloader off: it would start a second render executor
    app.run(
        host='0.0.0.0',
        port=5000,
        debug=app.config.get('DEBUG', True),
        use_reloader=False,
        threaded=True
    )


if __name__ == '__main__':
    main()
