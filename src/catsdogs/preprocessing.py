"""
Image preprocessing pipeline.

Turns an encoded image into the fixed-shape tensor the classifier expects:

1. Decode (Pillow) - any format Pillow can read, fully loaded up front
2. Resize to a square IMAGE_SIZE x IMAGE_SIZE, aspect ratio not preserved
3. Pixels to float32, alpha premultiplied onto black
4. Normalize with one of the presets below
5. Add the batch dimension in NHWC (TensorFlow) or NCHW (PyTorch) order

The defaults (180x180, Lanczos, raw 0..255 values, NHWC) match the
Keras cats-vs-dogs SavedModel, which rescales inside the graph.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import BinaryIO, Dict, Optional, Tuple, Union

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)


class ImageProcessingError(Exception):
    """Custom exception for image processing errors."""
    pass


class InvalidImageFormatError(ImageProcessingError):
    """Raised when the input cannot be decoded as an image."""
    pass


class BadImageDimensionsError(ImageProcessingError):
    """Raised when image dimensions are empty, too large or not the model size."""
    pass


class TensorCreationError(ImageProcessingError):
    """Raised when the pixel data cannot be turned into a model tensor."""
    pass


# Pillow resampling filters by name
RESAMPLE_FILTERS: Dict[str, int] = {
    'nearest': Image.Resampling.NEAREST,
    'box': Image.Resampling.BOX,
    'bilinear': Image.Resampling.BILINEAR,
    'hamming': Image.Resampling.HAMMING,
    'bicubic': Image.Resampling.BICUBIC,
    'lanczos': Image.Resampling.LANCZOS,
}

# ImageNet normalization parameters
IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)


@dataclass(frozen=True)
class Normalization:
    """Per-channel normalization: ((pixel * scale) - mean) / std."""

    scale: float = 1.0
    mean: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    std: Tuple[float, float, float] = (1.0, 1.0, 1.0)

    def apply(self, array: np.ndarray) -> np.ndarray:
        mean = np.asarray(self.mean, dtype=np.float32)
        std = np.asarray(self.std, dtype=np.float32)
        return ((array * np.float32(self.scale)) - mean) / std


NORMALIZATIONS: Dict[str, Normalization] = {
    # raw 0..255 values
    'none': Normalization(),
    # 0..1
    'unit': Normalization(scale=1.0 / 255.0),
    # -1..1
    'symmetric': Normalization(scale=1.0 / 255.0, mean=(0.5, 0.5, 0.5), std=(0.5, 0.5, 0.5)),
    'imagenet': Normalization(scale=1.0 / 255.0, mean=IMAGENET_MEAN, std=IMAGENET_STD),
}

LAYOUTS = ('nhwc', 'nchw')

VALID_MODES = ('1', 'L', 'LA', 'P', 'PA', 'RGB', 'RGBA', 'RGBX', 'CMYK', 'YCbCr')


@dataclass(frozen=True)
class PreprocessConfig:
    """Configuration for image preprocessing."""

    # Square input size expected by the model
    image_size: int = 180

    # Name of a key in RESAMPLE_FILTERS
    resample: str = 'lanczos'

    # Name of a key in NORMALIZATIONS
    normalization: str = 'none'

    # 'nhwc' or 'nchw'
    layout: str = 'nhwc'

    # Largest accepted width or height of the decoded image
    max_dimension: int = 4096

    def __post_init__(self):
        if self.image_size <= 0:
            raise ValueError(f"image_size must be positive, got {self.image_size}")
        if self.resample not in RESAMPLE_FILTERS:
            raise ValueError(
                f"Unknown resample filter: {self.resample}. "
                f"Must be one of {sorted(RESAMPLE_FILTERS)}"
            )
        if self.normalization not in NORMALIZATIONS:
            raise ValueError(
                f"Unknown normalization: {self.normalization}. "
                f"Must be one of {sorted(NORMALIZATIONS)}"
            )
        if self.layout not in LAYOUTS:
            raise ValueError(f"Unknown layout: {self.layout}. Must be one of {list(LAYOUTS)}")

    @property
    def tensor_shape(self) -> Tuple[int, int, int, int]:
        """Shape of the tensor produced by preprocess()."""
        size = self.image_size
        if self.layout == 'nchw':
            return (1, 3, size, size)
        return (1, size, size, 3)

    @classmethod
    def from_config(cls, cfg) -> 'PreprocessConfig':
        """Build from a Config object (or anything with the same attributes)."""
        return cls(
            image_size=cfg.IMAGE_SIZE,
            resample=cfg.RESAMPLE,
            normalization=cfg.NORMALIZATION,
            layout=cfg.TENSOR_LAYOUT,
            max_dimension=cfg.MAX_IMAGE_DIMENSION,
        )

    def to_dict(self) -> dict:
        return {
            'image_size': self.image_size,
            'resample': self.resample,
            'normalization': self.normalization,
            'layout': self.layout,
            'tensor_shape': list(self.tensor_shape),
        }


DEFAULT_PREPROCESS_CONFIG = PreprocessConfig()


def decode_image(source: Union[bytes, bytearray, BinaryIO],
                 max_dimension: Optional[int] = None) -> Image.Image:
    """
    Decode an encoded image.

    The size is checked from the header before any pixel data is read.
    The pixel data is then loaded immediately so that truncated or corrupt
    files fail here rather than later in the pipeline.

    Args:
        source: Encoded image bytes or a binary file object
        max_dimension: Largest accepted width or height, None for no limit

    Returns:
        Decoded PIL Image

    Raises:
        InvalidImageFormatError: If the data is not a readable image
        BadImageDimensionsError: If the header size exceeds max_dimension
    """
    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(source)

    try:
        image = Image.open(source)
    except (OSError, EOFError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
        raise InvalidImageFormatError(f"invalid image format: {e}") from e

    width, height = image.size
    if max_dimension is not None and (width > max_dimension or height > max_dimension):
        image.close()
        raise BadImageDimensionsError(
            f"Image dimensions too large: {width}x{height} (max: {max_dimension})"
        )

    try:
        image.load()
    except (OSError, EOFError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
        raise InvalidImageFormatError(f"invalid image format: {e}") from e

    logger.debug(f"Decoded {image.format} image {image.size[0]}x{image.size[1]} mode={image.mode}")
    return image


def validate_image(image: Optional[Image.Image],
                   max_dimension: int = 4096) -> Tuple[bool, Optional[str]]:
    """
    Validate image meets requirements.

    Args:
        image: PIL Image to validate
        max_dimension: Largest accepted width or height

    Returns:
        Tuple of (is_valid, error_message)

    Example:
        >>> is_valid, error = validate_image(Image.new('RGB', (10, 10)))
        >>> is_valid, error
        (True, None)
    """
    if image is None:
        return False, "Image is None"

    width, height = image.size
    if width < 1 or height < 1:
        return False, f"Invalid image dimensions: {width}x{height}"
    if width > max_dimension or height > max_dimension:
        return False, f"Image dimensions too large: {width}x{height} (max: {max_dimension})"

    if image.mode not in VALID_MODES:
        return False, f"Unsupported image mode: {image.mode}"

    return True, None


def resize_image(image: Image.Image, size: int, resample: str = 'lanczos') -> Image.Image:
    """Resize image to exactly size x size."""
    return image.resize((size, size), RESAMPLE_FILTERS[resample])


def image_to_array(image: Image.Image) -> np.ndarray:
    """
    Convert image pixels to a (H, W, 3) float32 array in the 0..255 range.

    Transparent pixels are premultiplied by their alpha, so a fully
    transparent pixel becomes black.
    """
    has_alpha = image.mode in ('RGBA', 'LA', 'PA') or (
        image.mode == 'P' and 'transparency' in image.info
    )

    if has_alpha:
        rgba = np.asarray(image.convert('RGBA'), dtype=np.float32)
        return rgba[..., :3] * (rgba[..., 3:4] / np.float32(255.0))

    if image.mode != 'RGB':
        logger.debug(f"Converting image from {image.mode} to RGB")
        image = image.convert('RGB')
    return np.asarray(image, dtype=np.float32)


def normalize(array: np.ndarray, normalization: str = 'none') -> np.ndarray:
    """Apply a named normalization preset to a (H, W, 3) array."""
    try:
        preset = NORMALIZATIONS[normalization]
    except KeyError:
        raise ValueError(f"Unknown normalization: {normalization}") from None
    return preset.apply(array)


def build_tensor(array: np.ndarray, layout: str = 'nhwc') -> np.ndarray:
    """
    Add the batch dimension and arrange channels for the model.

    Args:
        array: (H, W, 3) pixel array
        layout: 'nhwc' -> (1, H, W, 3), 'nchw' -> (1, 3, H, W)

    Returns:
        Contiguous float32 tensor

    Raises:
        TensorCreationError: If the array has the wrong shape or non-finite values
    """
    if array.ndim != 3 or array.shape[2] != 3:
        raise TensorCreationError(f"create tensor: expected (H, W, 3) array, got {array.shape}")
    if not np.all(np.isfinite(array)):
        raise TensorCreationError("create tensor: array contains non-finite values")

    if layout == 'nchw':
        array = array.transpose(2, 0, 1)
    elif layout != 'nhwc':
        raise TensorCreationError(f"create tensor: unknown layout {layout}")

    return np.ascontiguousarray(array[np.newaxis, ...], dtype=np.float32)


def preprocess(image: Image.Image,
               config: PreprocessConfig = DEFAULT_PREPROCESS_CONFIG) -> np.ndarray:
    """
    Run the full preprocessing pipeline on a decoded image.

    Args:
        image: Decoded PIL Image
        config: Preprocessing configuration

    Returns:
        Tensor with shape config.tensor_shape

    Raises:
        BadImageDimensionsError: If the image is empty, too large or the
            resized image is not the expected size
        ImageProcessingError: If the image mode is not supported
        TensorCreationError: If the tensor cannot be built
    """
    is_valid, error = validate_image(image, config.max_dimension)
    if not is_valid:
        if error.startswith(('Invalid image dimensions', 'Image dimensions')):
            raise BadImageDimensionsError(error)
        raise ImageProcessingError(error)

    resized = resize_image(image, config.image_size, config.resample)
    if resized.size != (config.image_size, config.image_size):
        raise BadImageDimensionsError(
            f"bad image dimensions: {resized.size[0]}x{resized.size[1]}, "
            f"expected {config.image_size}x{config.image_size}"
        )

    array = normalize(image_to_array(resized), config.normalization)
    return build_tensor(array, config.layout)
