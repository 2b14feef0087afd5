"""
Configuration Management Module

This module handles all application configuration including environment
variables, defaults, and validation.

Author: AI Infrastructure Curriculum
License: MIT
"""

import os
import logging
from typing import List
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)


# =========================================================================
# Helper Functions
# =========================================================================

def get_env_bool(key: str, default: bool = False) -> bool:
    """
    Get boolean value from environment variable.

    'true', '1', 'yes' and 'on' (case-insensitive) are True, any other
    value is False.

    Args:
        key: Environment variable name
        default: Default value if variable not set

    Returns:
        Boolean value

    Example:
        >>> os.environ['DEBUG'] = 'true'
        >>> get_env_bool('DEBUG', False)
        True
        >>> get_env_bool('NONEXISTENT', False)
        False
    """
    value = os.getenv(key)
    if value is None or value.strip() == '':
        return default
    return value.strip().lower() in ('true', '1', 'yes', 'on')


def get_env_int(key: str, default: int) -> int:
    """
    Get integer value from environment variable.

    Args:
        key: Environment variable name
        default: Default value if variable not set or invalid

    Returns:
        Integer value

    Example:
        >>> os.environ['PORT'] = '8080'
        >>> get_env_int('PORT', 5000)
        8080
        >>> get_env_int('NONEXISTENT', 5000)
        5000
    """
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Invalid integer for {key}: {value!r}, using {default}")
        return default


def get_env_float(key: str, default: float) -> float:
    """
    Get float value from environment variable.

    Args:
        key: Environment variable name
        default: Default value if variable not set or invalid

    Returns:
        Float value
    """
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Invalid float for {key}: {value!r}, using {default}")
        return default


def get_env_list(key: str, default: str) -> List[str]:
    """Get comma-separated list from environment variable."""
    value = os.getenv(key, default)
    return [item.strip() for item in value.split(',') if item.strip()]


class Config:
    """
    Application configuration class.

    Loads configuration from environment variables with sensible defaults.
    All configuration values should be accessed through this class to
    ensure consistency and ease of testing.

    Example:
        >>> config = Config()
        >>> print(config.MODEL_DIR)
        'model'
        >>> print(config.IMAGE_SIZE)
        180
    """

    # =========================================================================
    # Model Configuration
    # =========================================================================

    # Directory with the SavedModel, or path to a TorchScript file
    MODEL_DIR: str = os.path.expanduser(os.getenv('MODEL_DIR', 'model'))

    # 'auto', 'savedmodel' or 'torchscript'
    MODEL_FORMAT: str = os.getenv('MODEL_FORMAT', 'auto').lower()

    # SavedModel meta graph tags
    MODEL_TAGS: List[str] = get_env_list('MODEL_TAGS', 'serve')

    # SavedModel signature to call
    MODEL_SIGNATURE: str = os.getenv('MODEL_SIGNATURE', 'serving_default')

    # Empty means "the only input/output of the signature"
    INPUT_NAME: str = os.getenv('INPUT_NAME', '')
    OUTPUT_NAME: str = os.getenv('OUTPUT_NAME', '')

    # 'cpu', 'cuda' or 'mps' (TorchScript models only)
    DEVICE: str = os.getenv('DEVICE', 'cpu')

    # =========================================================================
    # Preprocessing Configuration
    # =========================================================================

    IMAGE_SIZE: int = get_env_int('IMAGE_SIZE', 180)
    RESAMPLE: str = os.getenv('RESAMPLE', 'lanczos').lower()

    # 'none' keeps raw 0..255 pixel values
    NORMALIZATION: str = os.getenv('NORMALIZATION', 'none').lower()

    # 'nhwc' for TensorFlow models, 'nchw' for PyTorch models
    TENSOR_LAYOUT: str = os.getenv('TENSOR_LAYOUT', 'nhwc').lower()

    # =========================================================================
    # Classification Configuration
    # =========================================================================

    # Probabilities up to and including THRESHOLD are the negative label
    THRESHOLD: float = get_env_float('THRESHOLD', 0.5)
    POSITIVE_LABEL: str = os.getenv('POSITIVE_LABEL', 'dog')
    NEGATIVE_LABEL: str = os.getenv('NEGATIVE_LABEL', 'cat')

    # =========================================================================
    # API Configuration
    # =========================================================================

    HOST: str = os.getenv('HOST', '0.0.0.0')
    PORT: int = get_env_int('PORT', 5000)
    DEBUG: bool = get_env_bool('DEBUG', False)
    API_VERSION: str = os.getenv('API_VERSION', '1.0.0')

    # =========================================================================
    # Request Limits
    # =========================================================================

    MAX_FILE_SIZE: int = get_env_int('MAX_FILE_SIZE', 10 * 1024 * 1024)
    MAX_IMAGE_DIMENSION: int = get_env_int('MAX_IMAGE_DIMENSION', 4096)

    # =========================================================================
    # Logging Configuration
    # =========================================================================

    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO').upper()

    # 'json' or 'text'
    LOG_FORMAT: str = os.getenv('LOG_FORMAT', 'json').lower()

    # =========================================================================
    # Valid Values
    # =========================================================================

    VALID_MODEL_FORMATS = ('auto', 'savedmodel', 'torchscript')
    VALID_RESAMPLE = ('nearest', 'bilinear', 'bicubic', 'lanczos', 'box', 'hamming')
    VALID_NORMALIZATIONS = ('none', 'unit', 'symmetric', 'imagenet')
    VALID_LAYOUTS = ('nhwc', 'nchw')
    VALID_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')
    VALID_LOG_FORMATS = ('json', 'text')

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def __init__(self):
        """Validate configuration and log it."""
        self.validate()
        logger.debug(f"Configuration loaded: {self}")

    @classmethod
    def validate(cls) -> bool:
        """
        Validate configuration values.

        Returns:
            True if all configuration is valid

        Raises:
            ValueError: If any configuration value is invalid
        """
        if cls.MODEL_FORMAT not in cls.VALID_MODEL_FORMATS:
            raise ValueError(
                f"Invalid MODEL_FORMAT: {cls.MODEL_FORMAT}. "
                f"Must be one of {list(cls.VALID_MODEL_FORMATS)}"
            )

        if not cls.MODEL_TAGS:
            raise ValueError("MODEL_TAGS must contain at least one tag")

        if cls.IMAGE_SIZE <= 0:
            raise ValueError("IMAGE_SIZE must be positive")

        if cls.RESAMPLE not in cls.VALID_RESAMPLE:
            raise ValueError(
                f"Invalid RESAMPLE: {cls.RESAMPLE}. "
                f"Must be one of {list(cls.VALID_RESAMPLE)}"
            )

        if cls.NORMALIZATION not in cls.VALID_NORMALIZATIONS:
            raise ValueError(
                f"Invalid NORMALIZATION: {cls.NORMALIZATION}. "
                f"Must be one of {list(cls.VALID_NORMALIZATIONS)}"
            )

        if cls.TENSOR_LAYOUT not in cls.VALID_LAYOUTS:
            raise ValueError(
                f"Invalid TENSOR_LAYOUT: {cls.TENSOR_LAYOUT}. "
                f"Must be one of {list(cls.VALID_LAYOUTS)}"
            )

        if not (0.0 < cls.THRESHOLD < 1.0):
            raise ValueError(
                f"Invalid THRESHOLD: {cls.THRESHOLD}. Must be between 0 and 1"
            )

        if cls.POSITIVE_LABEL == cls.NEGATIVE_LABEL:
            raise ValueError("POSITIVE_LABEL and NEGATIVE_LABEL must differ")

        if not (1024 <= cls.PORT <= 65535):
            raise ValueError(
                f"Invalid PORT: {cls.PORT}. "
                f"Must be between 1024 and 65535"
            )

        if cls.LOG_LEVEL not in cls.VALID_LOG_LEVELS:
            raise ValueError(
                f"Invalid LOG_LEVEL: {cls.LOG_LEVEL}. "
                f"Must be one of {list(cls.VALID_LOG_LEVELS)}"
            )

        if cls.LOG_FORMAT not in cls.VALID_LOG_FORMATS:
            raise ValueError(
                f"Invalid LOG_FORMAT: {cls.LOG_FORMAT}. "
                f"Must be one of {list(cls.VALID_LOG_FORMATS)}"
            )

        if cls.MAX_FILE_SIZE <= 0:
            raise ValueError("MAX_FILE_SIZE must be positive")
        if cls.MAX_IMAGE_DIMENSION <= 0:
            raise ValueError("MAX_IMAGE_DIMENSION must be positive")

        return True

    @classmethod
    def to_dict(cls) -> dict:
        """
        Convert configuration to dictionary.

        Returns:
            Dictionary of configuration values
        """
        return {
            key: value
            for key, value in vars(cls).items()
            if not key.startswith(('_', 'VALID_')) and key.isupper()
        }

    def __repr__(self) -> str:
        return (
            f"Config(MODEL_DIR='{self.MODEL_DIR}', MODEL_FORMAT='{self.MODEL_FORMAT}', "
            f"IMAGE_SIZE={self.IMAGE_SIZE}, PORT={self.PORT}, LOG_LEVEL='{self.LOG_LEVEL}')"
        )


# =========================================================================
# Module-level Configuration Instance
# =========================================================================

config = Config()
