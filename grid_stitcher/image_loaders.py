"""Image loading and discovery for tile files.

Tiles come off the microscope as single-page TIFFs (grayscale or RGB), while
review folders may also contain PNGs. Everything is normalised at this boundary
to a numpy array of shape (Y, X) or (Y, X, S) so the stitcher never has to care
about the file format.

Key functions:
- load_tile(): decode one file, raising TileLoadError on any failure
- find_image_files(): recursive discovery of reviewable images
- make_thumbnail(): aspect-preserving downscale for review items
"""

import logging
import os
import pathlib
from typing import Iterable

import numpy as np
import skimage
import tifffile

from .errors import PathLike, TileLoadError

logger = logging.getLogger(__name__)

TIFF_SUFFIXES = (".tif", ".tiff")
REVIEW_IMAGE_SUFFIXES = (".tif", ".png")


def _read_image(filepath: pathlib.Path) -> np.ndarray:
    if filepath.suffix.lower() in TIFF_SUFFIXES:
        # Multi-page files only contribute their first page.
        return tifffile.imread(filepath, key=0)
    return skimage.io.imread(filepath)


def load_tile(filepath: PathLike) -> np.ndarray:
    """Decode a single tile image.

    Args:
        filepath: Path to a TIFF, PNG or other image file

    Returns:
        Numpy array of shape (height, width) or (height, width, samples)

    Raises:
        TileLoadError: if the file is missing, unreadable or not a 2D image
    """
    filepath = pathlib.Path(filepath)
    try:
        image = _read_image(filepath)
    except Exception as e:
        raise TileLoadError(filepath, f"{type(e).__name__}: {e}") from e

    if image.ndim not in (2, 3) or image.size == 0:
        raise TileLoadError(filepath, f"unexpected image shape {image.shape}")
    logger.debug(f"Loaded {filepath.name}: shape={image.shape}, dtype={image.dtype}")
    return image


def has_suffix(name: str, suffixes: Iterable[str]) -> bool:
    lowered = name.lower()
    return any(lowered.endswith(s) for s in suffixes)


def find_image_files(
    folder: PathLike, suffixes: tuple[str, ...] = REVIEW_IMAGE_SUFFIXES
) -> list[pathlib.Path]:
    """Recursively list image files below a folder.

    Files directly in a folder come before the contents of its subfolders,
    and both are visited in name order.
    """
    folder = pathlib.Path(folder)
    files: list[pathlib.Path] = []
    subdirs: list[pathlib.Path] = []
    with os.scandir(folder) as it:
        entries = sorted(it, key=lambda e: e.name.lower())
    for entry in entries:
        if entry.is_dir():
            subdirs.append(pathlib.Path(entry.path))
        elif entry.is_file() and has_suffix(entry.name, suffixes):
            files.append(pathlib.Path(entry.path))
    for subdir in subdirs:
        files.extend(find_image_files(subdir, suffixes))
    return files


def make_thumbnail(image: np.ndarray, max_size_px: int) -> np.ndarray:
    """Downscale an image so its longest side is at most max_size_px.

    The aspect ratio and dtype are preserved; images that already fit are
    returned unchanged.
    """
    height, width = image.shape[:2]
    scale = max_size_px / max(height, width)
    if scale >= 1:
        return image
    new_shape = (
        max(1, int(round(height * scale))),
        max(1, int(round(width * scale))),
    ) + image.shape[2:]
    thumbnail = skimage.transform.resize(
        image, new_shape, preserve_range=True, anti_aliasing=True
    )
    if np.issubdtype(image.dtype, np.integer):
        thumbnail = np.round(thumbnail)
    return thumbnail.astype(image.dtype)
