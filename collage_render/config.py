"""
Configuration management for the collage variant renderer
Loads settings from YAML files with environment variable overrides
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Optional, Tuple
from pydantic import BaseModel, Field
from loguru import logger


class AppConfig(BaseModel):
    """Main application configuration"""

    # Flask settings
    SECRET_KEY: str = Field(default_factory=lambda: os.urandom(24).hex())
    FLASK_ENV: str = "development"
    DEBUG: bool = True
    TESTING: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/app.log"

    # Persistence
    STORAGE_BACKEND: str = "json"  # or "memory"
    DATA_FOLDER: str = "data"

    # Hexagon templates
    HEX_TEMPLATE_DIR: str = "assets/hexagon"
    HEX_CENTER_MIN_VERTICES: int = 15

    # Image acquisition
    MAX_CONCURRENT_FETCHES: int = 5
    IMAGE_FETCH_TIMEOUT_S: float = 30.0
    MAX_IMAGE_BYTES: int = 20 * 1024 * 1024
    FETCH_USER_AGENT: str = "CollageRender/1.0"

    # Rendering
    RENDER_WORKERS: int = 2
    OUTPUT_QUALITY: int = 85
    SQUARE_CANVAS_SMALL: Tuple[int, int] = (1200, 2025)
    SQUARE_CANVAS_LARGE: Tuple[int, int] = (1275, 2025)
    LARGE_CANVAS_MIN_MEMBERS: int = 24
    HEX_CANVAS: Tuple[int, int] = (1200, 1900)
    CELL_GAP_PX: int = 2
    BACKGROUND_COLOR: str = "#ffffff"
    PLACEHOLDER_COLOR: str = "#e5e7eb"
    PLACEHOLDER_GLYPH_COLOR: str = "#9ca3af"
    HEX_FILL_COLOR: str = "#00c1f3"
    HEX_STROKE_COLOR: str = "#231f20"
    HEX_STROKE_WIDTH: int = 2

    # Content store
    CLOUDINARY_CLOUD_NAME: Optional[str] = None
    CLOUDINARY_UPLOAD_PRESET: Optional[str] = None
    CLOUDINARY_API_KEY: Optional[str] = None
    CLOUDINARY_API_SECRET: Optional[str] = None
    CLOUDINARY_FOLDER: str = "center-variants"

    @property
    def cloudinary_configured(self) -> bool:
        if not self.CLOUDINARY_CLOUD_NAME:
            return False
        return bool(self.CLOUDINARY_UPLOAD_PRESET or (self.CLOUDINARY_API_KEY and self.CLOUDINARY_API_SECRET))


def load_yaml_config(file_path: str) -> Dict:
    """Load configuration from YAML file"""
    path = Path(file_path)
    if not path.exists():
        logger.warning(f"Config file not found: {file_path}")
        return {}

    try:
        with open(path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f) or {}
    except Exception as e:
        logger.error(f"Error loading config file {file_path}: {e}")
        return {}


def load_config(environment: str = "development", overrides: Optional[Dict] = None) -> AppConfig:
    """Load configuration with environment-specific overrides"""

    # Load base settings
    base_config = load_yaml_config("config/settings.yaml")

    # Load environment-specific settings
    env_config = load_yaml_config(f"config/settings_{environment}.yaml")

    # Merge configurations (env overrides base)
    config_dict = {**base_config, **env_config}

    # Apply environment variable overrides
    env_overrides = {
        'FLASK_ENV': os.getenv('FLASK_ENV', environment),
        'LOG_LEVEL': os.getenv('LOG_LEVEL'),
        'SECRET_KEY': os.getenv('SECRET_KEY'),
        'DATA_FOLDER': os.getenv('DATA_FOLDER'),
        'STORAGE_BACKEND': os.getenv('STORAGE_BACKEND'),
        'HEX_TEMPLATE_DIR': os.getenv('HEX_TEMPLATE_DIR'),
        'CLOUDINARY_CLOUD_NAME': os.getenv('CLOUDINARY_CLOUD_NAME'),
        'CLOUDINARY_UPLOAD_PRESET': os.getenv('CLOUDINARY_UPLOAD_PRESET'),
        'CLOUDINARY_API_KEY': os.getenv('CLOUDINARY_API_KEY'),
        'CLOUDINARY_API_SECRET': os.getenv('CLOUDINARY_API_SECRET'),
    }

    # Only include non-None values
    env_overrides = {k: v for k, v in env_overrides.items() if v is not None}
    config_dict.update(env_overrides)

    # Special handling for boolean DEBUG flag
    if 'FLASK_ENV' in config_dict:
        config_dict['DEBUG'] = config_dict['FLASK_ENV'] == 'development'

    if overrides:
        config_dict.update(overrides)

    try:
        return AppConfig(**config_dict)
    except Exception as e:
        logger.error(f"Configuration validation error: {e}")
        # Return default config on validation error
        return AppConfig()


# Global config instance
_config_instance = None


def get_config() -> AppConfig:
    """Get the global configuration instance"""
    global _config_instance
    if _config_instance is None:
        _config_instance = load_config(os.getenv('FLASK_ENV', 'development'))
    return _config_instance


def set_config(config: AppConfig) -> None:
    """Replace the global configuration instance (used by the app factory)"""
    global _config_instance
    _config_instance = config
