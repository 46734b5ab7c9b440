import logging
import math
import os
import pathlib
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import numpy as np
import skimage

from .errors import DimensionMismatchError, PathLike, WriteError, WrongTileCountError
from .image_loaders import load_tile
from .parameters import (
    SUPPORTED_TILE_COUNTS,
    GridGeometry,
    GridSpec,
    ImagePlaneDims,
    ScanOrder,
    TileGridSettings,
    TilePlacement,
)
from .status import StatusMessage

LEGACY_GRID = GridSpec(side=3, num_tiles=9)
OUTPUT_SUFFIX = ".png"


@dataclass
class ProgressCallbacks:
    update_progress: Callable[[int, int], None]
    starting_stitching: Callable[[str], None]
    finished_saving: Callable[[str], None]
    status: Callable[[StatusMessage], None]

    @classmethod
    def no_op(cls):
        return cls(
            update_progress=lambda _a, _b: None,
            starting_stitching=lambda _s: None,
            finished_saving=lambda _s: None,
            status=lambda _m: None,
        )


def grid_spec_for(num_tiles: int, base_name: str = "") -> GridSpec:
    """Derive the grid side length from the number of tiles.

    Raises:
        WrongTileCountError: unless there are exactly 9, 16 or 25 tiles
    """
    if num_tiles not in SUPPORTED_TILE_COUNTS:
        raise WrongTileCountError(base_name, num_tiles)
    return GridSpec(side=math.isqrt(num_tiles), num_tiles=num_tiles)


def scan_order_permutation(spec: GridSpec, scan_order: ScanOrder) -> list[int]:
    """Map each row-major grid slot to the raw index of the tile that fills it.

    Slot i of the grid is filled by raw tile `permutation[i]`.
    """
    order = list(range(spec.num_tiles))
    if scan_order == ScanOrder.row_major:
        return order
    elif scan_order == ScanOrder.instrument:
        # The instrument writes the second row of the scan right to left.
        order[3], order[5] = order[5], order[3]
        return order
    elif scan_order == ScanOrder.serpentine:
        for row in range(1, spec.side, 2):
            start = row * spec.side
            order[start : start + spec.side] = order[start : start + spec.side][::-1]
        return order
    else:
        raise RuntimeError(f"Unexpected ScanOrder value: {scan_order}")


def remap_scan_order(
    tiles: Sequence[PathLike], spec: GridSpec, scan_order: ScanOrder
) -> list[PathLike]:
    """Reorder raw tiles into row-major grid order."""
    return [tiles[i] for i in scan_order_permutation(spec, scan_order)]


def placed_grid(spec: GridSpec, geometry: GridGeometry) -> GridSpec:
    """The part of the grid that actually ends up on the canvas."""
    if geometry == GridGeometry.generalized:
        return spec
    elif geometry == GridGeometry.legacy:
        return LEGACY_GRID
    else:
        raise RuntimeError(f"Unexpected GridGeometry value: {geometry}")


def placed_source_indices(spec: GridSpec, settings: TileGridSettings) -> list[int]:
    """Raw indices of the tiles that are painted, in paint order."""
    grid = placed_grid(spec, settings.geometry)
    return scan_order_permutation(spec, settings.scan_order)[: grid.num_tiles]


def canvas_dims(
    spec: GridSpec, tile_dims: ImagePlaneDims, settings: TileGridSettings
) -> ImagePlaneDims:
    """Size of the stitched image.

    Each interior seam removes one overlap from the sum of the tile sizes, so a
    3x3 grid loses OVERLAP_X / OVERLAP_Y in total.
    """
    n = placed_grid(spec, settings.geometry).side
    return ImagePlaneDims(
        width_px=n * tile_dims.width_px - (n - 1) * settings.overlap_x_px,
        height_px=n * tile_dims.height_px - (n - 1) * settings.overlap_y_px,
    )


def compute_placements(
    spec: GridSpec, tile_dims: ImagePlaneDims, settings: TileGridSettings
) -> list[TilePlacement]:
    """Compute the canvas offset of every placed grid slot, in paint order."""
    grid = placed_grid(spec, settings.geometry)
    permutation = scan_order_permutation(spec, settings.scan_order)
    step_x = tile_dims.width_px - settings.overlap_x_px
    step_y = tile_dims.height_px - settings.overlap_y_px
    placements = []
    for index in range(grid.num_tiles):
        row, col = divmod(index, grid.side)
        placements.append(
            TilePlacement(
                index=index,
                source_index=permutation[index],
                row=row,
                col=col,
                x_px=col * step_x,
                y_px=row * step_y,
            )
        )
    return placements


def place_tile(canvas: np.ndarray, tile: np.ndarray, x_pixel: int, y_pixel: int) -> None:
    """Paint a tile onto the canvas, overwriting whatever is already there."""
    y_end = min(y_pixel + tile.shape[0], canvas.shape[0])
    x_end = min(x_pixel + tile.shape[1], canvas.shape[1])
    canvas[y_pixel:y_end, x_pixel:x_end] = tile[: y_end - y_pixel, : x_end - x_pixel]


def to_png_compatible(image: np.ndarray) -> np.ndarray:
    """Convert dtypes PNG can't store to uint16, stretching to the full range."""
    if image.dtype in (np.uint8, np.uint16):
        return image
    logging.debug(f"Rescaling {image.dtype} canvas to uint16 for PNG output")
    data = image.astype(np.float64)
    lo, hi = data.min(), data.max()
    if hi > lo:
        data = (data - lo) / (hi - lo)
    else:
        data = np.zeros_like(data)
    return skimage.util.img_as_uint(data)


class Stitcher:
    """Stitches the tiles of one channel of one acquisition into a single PNG."""

    def __init__(
        self,
        settings: Optional[TileGridSettings] = None,
        callbacks: ProgressCallbacks = ProgressCallbacks.no_op(),
    ):
        self.settings = settings if settings is not None else TileGridSettings()
        self.callbacks = callbacks

    def output_path(self, dest_dir: PathLike, base_name: str) -> pathlib.Path:
        return pathlib.Path(dest_dir) / f"{base_name}{OUTPUT_SUFFIX}"

    def load_tiles(
        self, tiles: Sequence[PathLike], source_indices: Sequence[int]
    ) -> dict[int, np.ndarray]:
        """Load the given tiles, checking they all match the first one in shape and dtype."""
        loaded: dict[int, np.ndarray] = {}
        first = None
        for source_index in source_indices:
            path = tiles[source_index]
            tile = load_tile(path)
            if first is None:
                first = tile
            elif tile.shape != first.shape:
                raise DimensionMismatchError(path, first.shape, tile.shape)
            elif tile.dtype != first.dtype:
                # The canvas takes the first tile's dtype.
                raise DimensionMismatchError(
                    path,
                    first.shape,
                    tile.shape,
                    detail=f"dtype {tile.dtype} does not match {first.dtype}",
                )
            loaded[source_index] = tile
        return loaded

    def check_overlap_fits(self, path: PathLike, tile: np.ndarray) -> None:
        height, width = tile.shape[:2]
        if width <= self.settings.overlap_x_px or height <= self.settings.overlap_y_px:
            raise DimensionMismatchError(
                path,
                (self.settings.overlap_y_px + 1, self.settings.overlap_x_px + 1),
                tile.shape,
                detail=(
                    f"tiles must be larger than the "
                    f"{self.settings.overlap_x_px}x{self.settings.overlap_y_px} px overlap"
                ),
            )

    def composite(
        self,
        tiles: dict[int, np.ndarray],
        placements: Sequence[TilePlacement],
        dims: ImagePlaneDims,
    ) -> np.ndarray:
        first = tiles[placements[0].source_index]
        canvas = np.zeros((dims.height_px, dims.width_px) + first.shape[2:], dtype=first.dtype)
        total = len(placements)
        for done, placement in enumerate(placements, start=1):
            place_tile(canvas, tiles[placement.source_index], placement.x_px, placement.y_px)
            self.callbacks.update_progress(done, total)
        return canvas

    def save_png(self, canvas: np.ndarray, output_path: pathlib.Path) -> None:
        try:
            os.makedirs(output_path.parent, exist_ok=True)
            skimage.io.imsave(output_path, to_png_compatible(canvas), check_contrast=False)
        except (OSError, ValueError) as e:
            raise WriteError(output_path, f"{type(e).__name__}: {e}") from e

    def stitch(
        self, tiles: Sequence[PathLike], dest_dir: PathLike, base_name: str
    ) -> pathlib.Path:
        """Stitch one channel's tiles and write `<dest_dir>/<base_name>.png`.

        Args:
            tiles: Tile files in raw acquisition order (9, 16 or 25 of them)
            dest_dir: Folder to write the stitched image to
            base_name: Output file name without extension

        Returns:
            Path of the written PNG

        Raises:
            WrongTileCountError, TileLoadError, DimensionMismatchError, WriteError
        """
        start_time = time.time()
        spec = grid_spec_for(len(tiles), base_name)
        self.callbacks.starting_stitching(base_name)
        if (
            self.settings.geometry == GridGeometry.legacy
            and spec.num_tiles > LEGACY_GRID.num_tiles
        ):
            logging.warning(
                f"{base_name}: legacy geometry only stitches the first "
                f"{LEGACY_GRID.num_tiles} of {spec.num_tiles} tiles"
            )

        # Everything is decoded before the canvas exists so a bad tile never
        # leaves a partial output behind.
        needed = placed_source_indices(spec, self.settings)
        loaded = self.load_tiles(tiles, needed)
        first_tile = loaded[needed[0]]
        self.check_overlap_fits(tiles[needed[0]], first_tile)

        tile_dims = ImagePlaneDims(width_px=first_tile.shape[1], height_px=first_tile.shape[0])
        placements = compute_placements(spec, tile_dims, self.settings)
        dims = canvas_dims(spec, tile_dims, self.settings)
        logging.debug(
            f"{base_name}: {spec.side}x{spec.side} grid of {tile_dims.width_px}x"
            f"{tile_dims.height_px} tiles -> {dims.width_px}x{dims.height_px} canvas"
        )
        canvas = self.composite(loaded, placements, dims)

        output_path = self.output_path(dest_dir, base_name)
        self.save_png(canvas, output_path)
        self.callbacks.finished_saving(str(output_path))
        logging.info(
            f"Stitched {base_name} to {output_path} in {time.time() - start_time:0.3f}s"
        )
        return output_path
