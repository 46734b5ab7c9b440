"""Sort the files of one acquisition folder into channels.

The microscope writes one file per tile and channel, tagging each file name
with CH1..CH4 or Overlay (e.g. `Image_XY01_00003_CH2.tif`).
"""

import enum
import logging
import os
import pathlib
import re
from typing import Optional, Sequence, TypeVar

from .errors import PathLike
from .image_loaders import has_suffix
from .parameters import TileOrder

FileT = TypeVar("FileT", str, pathlib.Path)

TILE_SUFFIXES = (".tif",)

# A run of digits that is not glued to a letter or another digit, so the XY01
# and CH1 tokens never count as a tile index.
_EMBEDDED_INDEX_RE = re.compile(r"(?<![A-Za-z0-9])(\d+)(?![A-Za-z0-9])")


class Channel(enum.Enum):
    """Channel tags, in the order they are matched against file names."""

    CH1 = "CH1"
    CH2 = "CH2"
    CH3 = "CH3"
    CH4 = "CH4"
    overlay = "Overlay"

    @property
    def tag(self) -> str:
        return self.value


def _basename(file: PathLike) -> str:
    return os.path.basename(os.fspath(file))


def channel_for(filename: PathLike) -> Optional[Channel]:
    """Return the first channel whose tag appears in the file name."""
    name = _basename(filename)
    for channel in Channel:
        if channel.tag in name:
            return channel
    return None


def classify(files: Sequence[FileT]) -> dict[Channel, list[FileT]]:
    """Partition files by channel, keeping their relative order.

    Every channel is present in the result, possibly with an empty list. Files
    that carry no channel tag are dropped.
    """
    groups: dict[Channel, list[FileT]] = {channel: [] for channel in Channel}
    for file in files:
        channel = channel_for(file)
        if channel is None:
            logging.debug(f"Ignoring {_basename(file)}: no channel tag in name")
            continue
        groups[channel].append(file)
    return groups


def embedded_index(filename: PathLike) -> Optional[int]:
    """Extract the tile number embedded in a file name.

    >>> embedded_index("Image_XY01_00005_CH2.tif")
    5
    >>> embedded_index("tile_CH1_7.tif")
    7
    """
    stem = _basename(filename).split(".", 1)[0]
    matches = _EMBEDDED_INDEX_RE.findall(stem)
    if not matches:
        return None
    return int(matches[-1])


def _embedded_index_key(file: PathLike) -> tuple[int, int, str]:
    idx = embedded_index(file)
    name = _basename(file).lower()
    if idx is None:
        return (1, 0, name)
    return (0, idx, name)


def order_tiles(files: Sequence[FileT], tile_order: TileOrder) -> list[FileT]:
    """Order tile files according to a TileOrder strategy."""
    if tile_order == TileOrder.filesystem:
        return list(files)
    elif tile_order == TileOrder.name:
        return sorted(files, key=lambda f: _basename(f).lower())
    elif tile_order == TileOrder.embedded_index:
        return sorted(files, key=_embedded_index_key)
    else:
        raise RuntimeError(f"Unexpected TileOrder value: {tile_order}")


def list_tile_files(
    folder: PathLike,
    tile_order: TileOrder = TileOrder.name,
    suffixes: tuple[str, ...] = TILE_SUFFIXES,
) -> list[pathlib.Path]:
    """List the tile files directly inside an acquisition folder."""
    with os.scandir(folder) as it:
        files = [
            pathlib.Path(entry.path)
            for entry in it
            if entry.is_file() and has_suffix(entry.name, suffixes)
        ]
    return order_tiles(files, tile_order)
