"""Grid Stitcher Package.

This package assembles square grids of overlapping microscope tiles (3x3, 4x4
or 5x5) into one composite PNG per channel.

Main functionality:
- Channel classification: Split an acquisition folder into CH1-CH4/Overlay
- Grid stitching: Remap scan order, place tiles with fixed overlap, write PNG
- Batch processing: Stitch every channel of every XY acquisition folder
- Review: Mark stitched images as good or bad and export them

Example usage:
    from grid_stitcher import AcquisitionStitcher

    messages = AcquisitionStitcher().run_root("/data/scan", "/data/scan_stitched")
    for message in messages:
        print(message)
"""

from .acquisition import AcquisitionStitcher
from .channels import Channel, classify
from .errors import (
    DimensionMismatchError,
    NoSelectionError,
    StitchError,
    TileLoadError,
    WriteError,
    WrongTileCountError,
)
from .parameters import (
    GridGeometry,
    ScanOrder,
    StitchingParameters,
    TileGridSettings,
    TileOrder,
)
from .review import ReviewMark, ReviewSession
from .status import StatusKind, StatusMessage
from .stitcher import ProgressCallbacks, Stitcher

__version__ = "0.1.0"

__all__ = [
    'AcquisitionStitcher',
    'Channel',
    'classify',
    'DimensionMismatchError',
    'NoSelectionError',
    'StitchError',
    'TileLoadError',
    'WriteError',
    'WrongTileCountError',
    'GridGeometry',
    'ScanOrder',
    'StitchingParameters',
    'TileGridSettings',
    'TileOrder',
    'ReviewMark',
    'ReviewSession',
    'StatusKind',
    'StatusMessage',
    'ProgressCallbacks',
    'Stitcher',
]
