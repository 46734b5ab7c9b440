import contextlib
import pathlib
import tempfile
from typing import Generator, Optional, Sequence

import numpy as np
import skimage

from .channels import Channel
from .parameters import ImagePlaneDims, TileGridSettings

PARAMETERS_FIXTURE_FILE = (
    pathlib.Path(__file__).parent.parent
    / "test_fixtures"
    / "parameters_test"
    / "parameters.json"
)

ALL_CHANNEL_TAGS = tuple(channel.tag for channel in Channel)

# Tiles small enough to keep tests fast, with an overlap scaled down to match.
SMALL_TILE = ImagePlaneDims(width_px=20, height_px=16)
SMALL_OVERLAP = TileGridSettings(overlap_x_px=4, overlap_y_px=3)


def tile_filename(folder_name: str, channel_tag: str, idx: int) -> str:
    """Name a tile the way the microscope does, e.g. Image_XY01_00001_CH1.tif."""
    return f"Image_{folder_name}_{idx + 1:05d}_{channel_tag}.tif"


def make_tile(value: int, im_size: ImagePlaneDims, rgb: bool = False) -> np.ndarray:
    """A tile filled with a single value so its placement is easy to check."""
    if rgb:
        return np.full((im_size.height_px, im_size.width_px, 3), value, dtype=np.uint8)
    return np.full((im_size.height_px, im_size.width_px), value, dtype=np.uint16)


def write_tile_set(
    folder: pathlib.Path,
    channel_tag: str,
    num_tiles: int,
    im_size: ImagePlaneDims = SMALL_TILE,
    rgb: bool = False,
) -> list[pathlib.Path]:
    """Write num_tiles tiles for one channel; raw tile i is filled with i + 1."""
    folder.mkdir(parents=True, exist_ok=True)
    paths = []
    for idx in range(num_tiles):
        path = folder / tile_filename(folder.name, channel_tag, idx)
        skimage.io.imsave(path, make_tile(idx + 1, im_size, rgb), check_contrast=False)
        paths.append(path)
    return paths


@contextlib.contextmanager
def temporary_acquisition(
    folders: Sequence[str] = ("XY01",),
    num_tiles: int = 9,
    channels: Sequence[str] = ALL_CHANNEL_TAGS,
    im_size: ImagePlaneDims = SMALL_TILE,
    channel_counts: Optional[dict[str, int]] = None,
    rgb: bool = False,
    name: str = "acquisition",
) -> Generator[pathlib.Path, None, None]:
    """Set up an acquisition root folder with one subfolder per acquisition.

    Every channel in every folder gets num_tiles tiles unless channel_counts
    overrides the count for that channel tag.
    """
    channel_counts = channel_counts or {}
    with tempfile.TemporaryDirectory() as d:
        root = pathlib.Path(d) / name
        root.mkdir()
        for folder_name in folders:
            for tag in channels:
                write_tile_set(
                    root / folder_name,
                    tag,
                    channel_counts.get(tag, num_tiles),
                    im_size,
                    rgb,
                )
        yield root
