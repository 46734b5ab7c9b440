import enum
import os
import pathlib
from typing import Annotated, NamedTuple, Optional

from pydantic import AfterValidator, BaseModel, Field

TILE_OVERLAP_X_PX = 289
"""Horizontal overlap, in pixels, between neighbouring tiles of one scan."""
TILE_OVERLAP_Y_PX = 216
"""Vertical overlap, in pixels, between neighbouring tiles of one scan."""

# Total overlap removed from a 3x3 canvas (two seams per axis).
OVERLAP_X = 2 * TILE_OVERLAP_X_PX
OVERLAP_Y = 2 * TILE_OVERLAP_Y_PX

SUPPORTED_TILE_COUNTS = (9, 16, 25)


class GridGeometry(enum.Enum):
    generalized = "generalized"
    legacy = "legacy"


class ScanOrder(enum.Enum):
    instrument = "instrument"
    serpentine = "serpentine"
    row_major = "row_major"


class TileOrder(enum.Enum):
    name = "name"
    embedded_index = "embedded_index"
    filesystem = "filesystem"


def input_path_exists(path: str) -> str:
    """Pydantic validator to check the path exists."""
    if not os.path.exists(path):
        raise ValueError(f"Input folder does not exist: {path}")

    return path


class TileGridSettings(BaseModel, use_attribute_docstrings=True):
    """How the tiles of a single channel are arranged on the output canvas."""

    geometry: GridGeometry = GridGeometry.generalized
    """Canvas and placement geometry.

    generalized sizes the canvas as N * tile - (N - 1) * overlap and places all
    N*N tiles. legacy reproduces the older behaviour where every grid size was
    stitched with the 3x3 geometry using only the first nine tiles.
    """

    scan_order: ScanOrder = ScanOrder.instrument
    """How raw acquisition order maps onto row-major grid slots.

    instrument swaps slots 3 and 5 (the reversed second row of the scan) and
    leaves every other slot alone. serpentine reverses every odd row.
    row_major applies no remapping.
    """

    overlap_x_px: int = Field(default=TILE_OVERLAP_X_PX, ge=0)
    """Horizontal overlap between adjacent tiles, in pixels."""

    overlap_y_px: int = Field(default=TILE_OVERLAP_Y_PX, ge=0)
    """Vertical overlap between adjacent tiles, in pixels."""


class StitchingParameters(
    BaseModel,
    use_attribute_docstrings=True,
):
    """Parameters for stitching every acquisition folder below an input folder."""

    input_folder: Annotated[str, AfterValidator(input_path_exists)]
    """A folder containing one subfolder per acquisition.

    Acquisition subfolders are recognised by the acquisition token in their
    name (e.g. XY01) and hold one .tif file per tile and channel.
    """

    output_folder: Optional[str] = None
    """Folder the stitched PNGs are written to.

    Defaults to a sibling of the input folder with a `_stitched` suffix.
    """

    grid: TileGridSettings = Field(default_factory=TileGridSettings)
    """Grid geometry and tile ordering settings."""

    tile_order: TileOrder = TileOrder.name
    """How tile files are ordered before the scan order remap.

    name sorts file names case-insensitively, embedded_index sorts by the tile
    number embedded in each file name, and filesystem keeps the order the
    directory listing returns.
    """

    acquisition_token: str = "XY"
    """Only subfolders whose name contains this token are stitched."""

    num_workers: int = Field(default=1, ge=1)
    """Number of acquisition folders to stitch in parallel."""

    verbose: bool = False
    """Show debug-level logging."""

    @property
    def stitched_folder(self) -> pathlib.Path:
        """Path to folder containing stitched outputs."""
        if self.output_folder:
            return pathlib.Path(self.output_folder)
        return pathlib.Path(self.input_folder.rstrip("/\\") + "_stitched")

    @classmethod
    def from_json_file(cls, json_path: str | pathlib.Path) -> "StitchingParameters":
        """Load parameters saved with to_json_file (or written by hand).

        Missing optional fields, including nested grid fields, take their
        defaults. The input folder must exist.
        """
        return cls.model_validate_json(pathlib.Path(json_path).read_text())

    def to_json_file(self, json_path: str | pathlib.Path) -> None:
        """Save parameters so a run can be repeated with --params-file."""
        pathlib.Path(json_path).write_text(self.model_dump_json(indent=2))


class ImagePlaneDims(NamedTuple):
    width_px: int
    height_px: int


class GridSpec(NamedTuple):
    """Side length and tile count of a square tile grid."""

    side: int
    num_tiles: int


class TilePlacement(NamedTuple):
    """Where one grid slot lands on the output canvas."""

    index: int
    """Row-major slot index."""
    source_index: int
    """Index into the raw (acquisition ordered) tile list."""
    row: int
    col: int
    x_px: int
    y_px: int
