"""Raster loading and silhouette export."""
import logging
from pathlib import Path
from typing import Tuple, Union

import numpy as np
from PIL import Image
from PIL import ImageOps
from skimage.color import rgb2gray
from skimage.util import img_as_float

from layerseg.types import IngestError, Silhouette

logger = logging.getLogger(__name__)


def intensity_from_array(image: np.ndarray) -> np.ndarray:
    """
    Convert an image array to a grayscale intensity in [0, 1].

    Args:
        image: (H, W), (H, W, 3) or (H, W, 4) array, float or integer

    Returns:
        (H, W) float64 intensity
    """
    image = np.asarray(image)
    if image.dtype.kind in 'ui':
        image = img_as_float(image)
    else:
        image = image.astype(np.float64)
        # Normalize to [0, 1] if needed
        if image.max() > 1.0:
            image = image / 255.0

    if image.ndim == 2:
        return np.clip(image, 0.0, 1.0)

    if image.ndim != 3:
        raise IngestError(f"Expected 2D or 3D array, got {image.ndim}D")

    if image.shape[2] == 4:
        # RGBA - composite on white
        alpha = image[..., 3:4]
        image = image[..., :3] * alpha + (1 - alpha)
    elif image.shape[2] != 3:
        raise IngestError(f"Expected 3 or 4 channels, got {image.shape[2]}")

    return np.clip(rgb2gray(image), 0.0, 1.0)


def load_intensity(path: Union[str, Path]) -> np.ndarray:
    """
    Load a drawing as a grayscale intensity image.

    Args:
        path: Path to image file

    Returns:
        (H, W) float64 intensity in [0, 1], paper white is 1

    Raises:
        FileNotFoundError: If file doesn't exist
        IngestError: If file cannot be loaded
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Image file not found: {path}")

    if not path.is_file():
        raise IngestError(f"Path is not a file: {path}")

    try:
        with Image.open(path) as img:
            # Apply EXIF orientation transformation to handle rotation
            img = ImageOps.exif_transpose(img)

            if img.mode in ('RGBA', 'LA', 'P'):
                img = img.convert('RGBA')
                background = Image.new('RGB', img.size, (255, 255, 255))
                background.paste(img, mask=img.split()[3])
                img = background
            elif img.mode != 'RGB':
                img = img.convert('RGB')

            intensity = intensity_from_array(np.array(img))
    except (IOError, OSError) as e:
        raise IngestError(f"Failed to load image {path}: {e}")

    logger.info(f"Loaded {path.name}: {intensity.shape[1]}x{intensity.shape[0]}")
    return intensity


def to_uint8(image: np.ndarray) -> np.ndarray:
    return (np.clip(image, 0.0, 1.0) * 255).round().astype(np.uint8)


def save_silhouette(silhouette: Silhouette, directory: Union[str, Path]) -> Tuple[Path, Path]:
    """
    Write a silhouette as two grayscale PNGs.

    _seg_NNN.png holds the filled shape and _org_NNN.png the thickened
    contour image (black hard cuts, dark gray merge markers, white rest).

    Returns:
        Tuple of (shape path, contour path)
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    number = f"{silhouette.index:03d}"

    shape_path = directory / f"_seg_{number}.png"
    contour_path = directory / f"_org_{number}.png"
    Image.fromarray(to_uint8(silhouette.mask)).save(shape_path)
    Image.fromarray(to_uint8(silhouette.boundary)).save(contour_path)

    logger.debug(f"Saved silhouette of segment {silhouette.segment_id} as {number}")
    return shape_path, contour_path


def save_image(image: np.ndarray, path: Union[str, Path]) -> None:
    """Save a float grayscale or RGB image in [0, 1]."""
    Image.fromarray(to_uint8(image)).save(Path(path))
