import pathlib
from typing import Union

from .parameters import SUPPORTED_TILE_COUNTS
from .status import StatusKind

PathLike = Union[str, pathlib.Path]


class StitchError(Exception):
    """Base class for failures that abort the stitch of a single channel."""

    status_kind: StatusKind


class WrongTileCountError(StitchError):
    status_kind = StatusKind.wrong_tile_count

    def __init__(self, base_name: str, num_tiles: int):
        self.base_name = base_name
        self.num_tiles = num_tiles
        counts = ", ".join(str(c) for c in SUPPORTED_TILE_COUNTS[:-1])
        super().__init__(
            f"Wrong number of images for {base_name} (found {num_tiles}). "
            f"Please ensure there are exactly {counts}, or "
            f"{SUPPORTED_TILE_COUNTS[-1]} images to complete a stitch."
        )


class TileLoadError(StitchError):
    status_kind = StatusKind.tile_load_failure

    def __init__(self, path: PathLike, reason: str):
        self.path = pathlib.Path(path)
        self.reason = reason
        super().__init__(f"Failed to load image: {self.path} ({reason})")


class DimensionMismatchError(StitchError):
    status_kind = StatusKind.dimension_mismatch

    def __init__(
        self, path: PathLike, expected: tuple, actual: tuple, detail: str = ""
    ):
        self.path = pathlib.Path(path)
        self.expected = tuple(expected)
        self.actual = tuple(actual)
        if detail:
            message = f"Image {self.path} has shape {self.actual}: {detail}"
        else:
            message = f"Image {self.path} has shape {self.actual}, expected {self.expected}"
        super().__init__(message)


class WriteError(StitchError):
    status_kind = StatusKind.write_failure

    def __init__(self, path: PathLike, reason: str):
        self.path = pathlib.Path(path)
        self.reason = reason
        super().__init__(f"Failed to save image: {self.path} ({reason})")


class NoSelectionError(StitchError):
    status_kind = StatusKind.no_selection

    def __init__(self, what: str):
        self.what = what
        super().__init__(f"No folder selected. Please choose a folder {what}.")
