import pathlib
import tempfile
import unittest

import numpy as np
import skimage
import tifffile

from .errors import DimensionMismatchError, TileLoadError, WriteError, WrongTileCountError
from .parameters import (
    OVERLAP_X,
    OVERLAP_Y,
    GridGeometry,
    GridSpec,
    ImagePlaneDims,
    ScanOrder,
    TileGridSettings,
)
from .stitcher import (
    ProgressCallbacks,
    Stitcher,
    canvas_dims,
    compute_placements,
    grid_spec_for,
    remap_scan_order,
    scan_order_permutation,
    to_png_compatible,
)
from .testutil import SMALL_OVERLAP, SMALL_TILE, write_tile_set


def small_settings(**kwargs) -> TileGridSettings:
    return SMALL_OVERLAP.model_copy(update=kwargs)


class GridSpecTest(unittest.TestCase):
    def test_supported_counts(self) -> None:
        self.assertEqual(grid_spec_for(9), GridSpec(3, 9))
        self.assertEqual(grid_spec_for(16), GridSpec(4, 16))
        self.assertEqual(grid_spec_for(25), GridSpec(5, 25))

    def test_unsupported_counts(self) -> None:
        for count in [0, 1, 4, 8, 10, 12, 36]:
            with self.assertRaises(WrongTileCountError) as ctx:
                grid_spec_for(count, "A01_CH1")
            self.assertEqual(ctx.exception.num_tiles, count)
            self.assertIn("A01_CH1", str(ctx.exception))


class ScanOrderTest(unittest.TestCase):
    def test_instrument_3x3(self) -> None:
        self.assertEqual(
            scan_order_permutation(GridSpec(3, 9), ScanOrder.instrument),
            [0, 1, 2, 5, 4, 3, 6, 7, 8],
        )

    def test_instrument_larger_grids_only_touch_first_rows(self) -> None:
        expected = [0, 1, 2, 5, 4, 3] + list(range(6, 16))
        self.assertEqual(scan_order_permutation(GridSpec(4, 16), ScanOrder.instrument), expected)
        expected = [0, 1, 2, 5, 4, 3] + list(range(6, 25))
        self.assertEqual(scan_order_permutation(GridSpec(5, 25), ScanOrder.instrument), expected)

    def test_serpentine(self) -> None:
        self.assertEqual(
            scan_order_permutation(GridSpec(3, 9), ScanOrder.serpentine),
            scan_order_permutation(GridSpec(3, 9), ScanOrder.instrument),
        )
        self.assertEqual(
            scan_order_permutation(GridSpec(4, 16), ScanOrder.serpentine),
            [0, 1, 2, 3, 7, 6, 5, 4, 8, 9, 10, 11, 15, 14, 13, 12],
        )

    def test_row_major(self) -> None:
        self.assertEqual(
            scan_order_permutation(GridSpec(5, 25), ScanOrder.row_major), list(range(25))
        )

    def test_remap_scan_order(self) -> None:
        raw = [f"tile_{i}" for i in range(9)]
        remapped = remap_scan_order(raw, GridSpec(3, 9), ScanOrder.instrument)
        self.assertEqual(remapped[3:6], ["tile_5", "tile_4", "tile_3"])
        self.assertEqual(remapped[:3], raw[:3])
        self.assertEqual(remapped[6:], raw[6:])


class GeometryTest(unittest.TestCase):
    def test_3x3_canvas_uses_fixed_overlap(self) -> None:
        dims = canvas_dims(GridSpec(3, 9), ImagePlaneDims(512, 384), TileGridSettings())
        self.assertEqual(dims, ImagePlaneDims(512 * 3 - OVERLAP_X, 384 * 3 - OVERLAP_Y))
        self.assertEqual(dims, ImagePlaneDims(958, 720))

    def test_generalized_canvas(self) -> None:
        settings = TileGridSettings()
        self.assertEqual(
            canvas_dims(GridSpec(4, 16), ImagePlaneDims(512, 384), settings),
            ImagePlaneDims(4 * 512 - 3 * 289, 4 * 384 - 3 * 216),
        )
        self.assertEqual(
            canvas_dims(GridSpec(5, 25), ImagePlaneDims(512, 384), settings),
            ImagePlaneDims(5 * 512 - 4 * 289, 5 * 384 - 4 * 216),
        )

    def test_legacy_canvas_is_always_3x3(self) -> None:
        settings = TileGridSettings(geometry=GridGeometry.legacy)
        for spec in [GridSpec(3, 9), GridSpec(4, 16), GridSpec(5, 25)]:
            self.assertEqual(
                canvas_dims(spec, ImagePlaneDims(512, 384), settings), ImagePlaneDims(958, 720)
            )

    def test_placements_3x3(self) -> None:
        placements = compute_placements(
            GridSpec(3, 9), ImagePlaneDims(512, 384), TileGridSettings()
        )
        self.assertEqual(len(placements), 9)
        by_cell = {(p.row, p.col): p for p in placements}
        self.assertEqual(by_cell[(1, 0)].source_index, 5)
        self.assertEqual(by_cell[(1, 1)].source_index, 4)
        self.assertEqual(by_cell[(1, 2)].source_index, 3)
        for cell in [(0, 0), (0, 1), (0, 2), (2, 0), (2, 1), (2, 2)]:
            self.assertEqual(by_cell[cell].source_index, cell[0] * 3 + cell[1])
        self.assertEqual((by_cell[(0, 1)].x_px, by_cell[(0, 1)].y_px), (512 - 289, 0))
        self.assertEqual((by_cell[(2, 2)].x_px, by_cell[(2, 2)].y_px), (1024 - 578, 768 - 432))
        self.assertEqual([p.index for p in placements], list(range(9)))

    def test_placements_legacy_4x4_uses_first_nine_tiles(self) -> None:
        placements = compute_placements(
            GridSpec(4, 16),
            ImagePlaneDims(512, 384),
            TileGridSettings(geometry=GridGeometry.legacy),
        )
        self.assertEqual(len(placements), 9)
        self.assertEqual(sorted(p.source_index for p in placements), list(range(9)))
        self.assertEqual(max(p.col for p in placements), 2)


class StitcherTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = pathlib.Path(self._tmp.name)
        self.dest = self.tmp / "stitched"

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def tiles(self, count: int, **kwargs) -> list[pathlib.Path]:
        return write_tile_set(self.tmp / "XY01", "CH1", count, **kwargs)

    def read_output(self, path: pathlib.Path) -> np.ndarray:
        return skimage.io.imread(path)

    def test_basic_3x3_stitch(self) -> None:
        output = Stitcher(SMALL_OVERLAP).stitch(self.tiles(9), self.dest, "A01_CH1")
        self.assertEqual(output, self.dest / "A01_CH1.png")
        self.assertEqual(sorted(p.name for p in self.dest.iterdir()), ["A01_CH1.png"])

        im = self.read_output(output)
        # 3 * 20 - 2 * 4 wide, 3 * 16 - 2 * 3 high
        self.assertEqual(im.shape, (42, 52))
        self.assertEqual(im.dtype, np.uint16)
        # Raw tile i is filled with i + 1.
        self.assertEqual(im[0, 0], 1)
        self.assertEqual(im[5, 40], 3)
        self.assertEqual(im[20, 2], 6)
        self.assertEqual(im[20, 20], 5)
        self.assertEqual(im[20, 40], 4)
        self.assertEqual(im[35, 45], 9)
        self.assertEqual(im[41, 51], 9)
        # Later tiles overwrite earlier ones where they overlap.
        self.assertEqual(im[14, 17], 5)
        self.assertEqual(im[1, 17], 2)
        self.assertTrue((im > 0).all())

    def test_example_scan_size(self) -> None:
        tiles = self.tiles(9, im_size=ImagePlaneDims(512, 384))
        output = Stitcher().stitch(tiles, self.dest, "scan")
        self.assertEqual(output.name, "scan.png")
        im = self.read_output(output)
        self.assertEqual(im.shape, (720, 958))
        self.assertEqual(im[384 - 216 + 10, 5], 6)

    def test_generalized_4x4(self) -> None:
        output = Stitcher(SMALL_OVERLAP).stitch(self.tiles(16), self.dest, "A01_CH1")
        im = self.read_output(output)
        self.assertEqual(im.shape, (4 * 16 - 3 * 3, 4 * 20 - 3 * 4))
        self.assertEqual(im[2, 60], 6)
        self.assertEqual(im[20, 25], 4)
        self.assertEqual(im[im.shape[0] - 1, im.shape[1] - 1], 16)
        self.assertTrue((im > 0).all())

    def test_serpentine_4x4(self) -> None:
        settings = small_settings(scan_order=ScanOrder.serpentine)
        im = self.read_output(Stitcher(settings).stitch(self.tiles(16), self.dest, "s"))
        self.assertEqual(im[20, 2], 8)
        self.assertEqual(im[2, 60], 4)

    def test_generalized_5x5(self) -> None:
        output = Stitcher(SMALL_OVERLAP).stitch(self.tiles(25), self.dest, "A01_CH1")
        im = self.read_output(output)
        self.assertEqual(im.shape, (5 * 16 - 4 * 3, 5 * 20 - 4 * 4))
        self.assertEqual(im[im.shape[0] - 1, im.shape[1] - 1], 25)
        self.assertEqual(set(np.unique(im)), set(range(1, 26)))

    def test_legacy_4x4_matches_3x3_of_first_nine(self) -> None:
        settings = small_settings(geometry=GridGeometry.legacy)
        tiles = self.tiles(16)
        legacy = self.read_output(Stitcher(settings).stitch(tiles, self.dest, "legacy"))
        nine = self.read_output(Stitcher(settings).stitch(tiles[:9], self.dest, "nine"))
        self.assertEqual(legacy.shape, (42, 52))
        np.testing.assert_array_equal(legacy, nine)
        self.assertLessEqual(legacy.max(), 9)

    def test_rgb_tiles(self) -> None:
        output = Stitcher(SMALL_OVERLAP).stitch(self.tiles(9, rgb=True), self.dest, "A01_Overlay")
        im = self.read_output(output)
        self.assertEqual(im.shape, (42, 52, 3))
        self.assertEqual(im.dtype, np.uint8)
        np.testing.assert_array_equal(im[20, 2], [6, 6, 6])

    def test_wrong_tile_count_writes_nothing(self) -> None:
        with self.assertRaises(WrongTileCountError):
            Stitcher(SMALL_OVERLAP).stitch(self.tiles(12), self.dest, "A01_CH1")
        self.assertFalse(self.dest.exists())

    def test_corrupt_tile_writes_nothing(self) -> None:
        tiles = self.tiles(9)
        tiles[7].write_bytes(b"corrupted")
        with self.assertRaises(TileLoadError) as ctx:
            Stitcher(SMALL_OVERLAP).stitch(tiles, self.dest, "A01_CH1")
        self.assertEqual(ctx.exception.path, tiles[7])
        self.assertIn(tiles[7].name, str(ctx.exception))
        self.assertFalse(self.dest.exists())

    def test_missing_tile(self) -> None:
        tiles = self.tiles(9)
        tiles[0].unlink()
        with self.assertRaises(TileLoadError) as ctx:
            Stitcher(SMALL_OVERLAP).stitch(tiles, self.dest, "A01_CH1")
        self.assertEqual(ctx.exception.path, tiles[0])

    def test_dimension_mismatch(self) -> None:
        tiles = self.tiles(9)
        tifffile.imwrite(tiles[4], np.ones((16, 21), dtype=np.uint16))
        with self.assertRaises(DimensionMismatchError) as ctx:
            Stitcher(SMALL_OVERLAP).stitch(tiles, self.dest, "A01_CH1")
        self.assertEqual(ctx.exception.path, tiles[4])
        self.assertEqual(ctx.exception.expected, (16, 20))
        self.assertEqual(ctx.exception.actual, (16, 21))
        self.assertFalse(self.dest.exists())

    def test_dtype_mismatch(self) -> None:
        tiles = self.tiles(9)
        for i, path in enumerate(tiles):
            if i == 0:
                tifffile.imwrite(path, np.full((16, 20), 1, dtype=np.uint8))
            else:
                tifffile.imwrite(path, np.full((16, 20), 300, dtype=np.uint16))
        with self.assertRaises(DimensionMismatchError) as ctx:
            Stitcher(SMALL_OVERLAP).stitch(tiles, self.dest, "A01_CH1")
        self.assertEqual(ctx.exception.path, tiles[1])
        self.assertIn("uint16", str(ctx.exception))
        self.assertIn("uint8", str(ctx.exception))
        self.assertFalse(self.dest.exists())

    def test_tiles_smaller_than_overlap(self) -> None:
        with self.assertRaises(DimensionMismatchError) as ctx:
            Stitcher().stitch(self.tiles(9), self.dest, "A01_CH1")
        self.assertIn("overlap", str(ctx.exception))
        self.assertFalse(self.dest.exists())

    def test_write_failure(self) -> None:
        blocker = self.tmp / "not_a_folder"
        blocker.write_text("")
        with self.assertRaises(WriteError) as ctx:
            Stitcher(SMALL_OVERLAP).stitch(self.tiles(9), blocker, "A01_CH1")
        self.assertEqual(ctx.exception.path, blocker / "A01_CH1.png")

    def test_stitching_is_idempotent(self) -> None:
        tiles = self.tiles(9)
        stitcher = Stitcher(SMALL_OVERLAP)
        first = stitcher.stitch(tiles, self.dest, "A01_CH1").read_bytes()
        second = stitcher.stitch(tiles, self.dest, "A01_CH1").read_bytes()
        self.assertEqual(first, second)

    def test_float_tiles_are_rescaled(self) -> None:
        folder = self.tmp / "float"
        folder.mkdir()
        tiles = []
        for i in range(9):
            path = folder / f"tile_CH1_{i}.tif"
            tifffile.imwrite(path, np.full((16, 20), i / 8.0, dtype=np.float32))
            tiles.append(path)
        im = self.read_output(Stitcher(SMALL_OVERLAP).stitch(tiles, self.dest, "float"))
        self.assertEqual(im.dtype, np.uint16)
        self.assertEqual(im[0, 0], 0)
        self.assertEqual(im[41, 51], 65535)

    def test_callbacks(self) -> None:
        progress = []
        started = []
        finished = []
        callbacks = ProgressCallbacks.no_op()
        callbacks.update_progress = lambda done, total: progress.append((done, total))
        callbacks.starting_stitching = started.append
        callbacks.finished_saving = finished.append

        output = Stitcher(SMALL_OVERLAP, callbacks).stitch(self.tiles(9), self.dest, "A01_CH1")
        self.assertEqual(started, ["A01_CH1"])
        self.assertEqual(progress, [(i, 9) for i in range(1, 10)])
        self.assertEqual(finished, [str(output)])


class PngConversionTest(unittest.TestCase):
    def test_supported_dtypes_pass_through(self) -> None:
        for dtype in [np.uint8, np.uint16]:
            image = np.ones((2, 2), dtype=dtype)
            self.assertIs(to_png_compatible(image), image)

    def test_constant_image(self) -> None:
        converted = to_png_compatible(np.full((2, 2), 7, dtype=np.int32))
        self.assertEqual(converted.dtype, np.uint16)
        self.assertTrue((converted == 0).all())
