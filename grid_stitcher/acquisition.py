"""Stitch every channel of every acquisition folder below a root folder.

An acquisition folder (named like `XY01`) holds one .tif per tile and channel.
Each channel is stitched on its own into `<prefix>_<channel>.png`, where the
prefix is the folder name with its first two characters replaced by "A"
(`XY01` -> `A01`). A failure in one channel is reported and the remaining
channels and folders carry on.
"""

import logging
import multiprocessing
import os
import pathlib
from typing import Callable, Optional, Sequence

from tqdm import tqdm

from .channels import Channel, classify, list_tile_files
from .errors import NoSelectionError, PathLike, StitchError
from .parameters import StitchingParameters, TileGridSettings, TileOrder
from .status import StatusKind, StatusMessage
from .stitcher import ProgressCallbacks, Stitcher

DEFAULT_ACQUISITION_TOKEN = "XY"
OUTPUT_PREFIX_REPLACEMENT = "A"
RUN_COMPLETE_TEXT = "Stitching complete."

Reporter = Callable[[StatusMessage], None]


def is_acquisition_folder(name: str, token: str = DEFAULT_ACQUISITION_TOKEN) -> bool:
    return token in name


def output_prefix(folder_name: str) -> str:
    """Base name prefix for the stitched outputs of an acquisition folder."""
    return OUTPUT_PREFIX_REPLACEMENT + folder_name[2:]


def channel_base_name(prefix: str, channel: Channel) -> str:
    return f"{prefix}_{channel.tag}"


def discover_acquisition_folders(root: PathLike) -> list[pathlib.Path]:
    """List the immediate subfolders of root in name order."""
    with os.scandir(root) as it:
        return sorted(
            (pathlib.Path(entry.path) for entry in it if entry.is_dir()),
            key=lambda p: p.name.lower(),
        )


def _stitch_folder_worker(
    args: tuple[pathlib.Path, pathlib.Path, TileGridSettings, TileOrder],
) -> list[StatusMessage]:
    folder, dest_dir, settings, tile_order = args
    return AcquisitionStitcher(settings, tile_order=tile_order).stitch_folder(
        folder, dest_dir
    )


class AcquisitionStitcher:
    def __init__(
        self,
        settings: Optional[TileGridSettings] = None,
        tile_order: TileOrder = TileOrder.name,
        acquisition_token: str = DEFAULT_ACQUISITION_TOKEN,
        num_workers: int = 1,
        callbacks: ProgressCallbacks = ProgressCallbacks.no_op(),
    ):
        self.stitcher = Stitcher(settings, callbacks)
        self.tile_order = tile_order
        self.acquisition_token = acquisition_token
        self.num_workers = num_workers
        self.callbacks = callbacks

    @classmethod
    def from_parameters(
        cls,
        params: StitchingParameters,
        callbacks: ProgressCallbacks = ProgressCallbacks.no_op(),
    ) -> "AcquisitionStitcher":
        return cls(
            params.grid,
            tile_order=params.tile_order,
            acquisition_token=params.acquisition_token,
            num_workers=params.num_workers,
            callbacks=callbacks,
        )

    @property
    def settings(self) -> TileGridSettings:
        return self.stitcher.settings

    def stitch_channel(
        self, tiles: Sequence[PathLike], dest_dir: PathLike, base_name: str
    ) -> StatusMessage:
        """Stitch one channel, turning any StitchError into an error status."""
        try:
            output_path = self.stitcher.stitch(tiles, dest_dir, base_name)
        except StitchError as e:
            logging.debug(f"Stitching {base_name} failed: {e}")
            return StatusMessage.from_error(e, base_name=base_name)
        return StatusMessage(
            StatusKind.channel_stitched,
            f"Stitched {base_name} saved to {output_path}",
            base_name=base_name,
            output_path=output_path,
        )

    def stitch_folder(
        self,
        folder: PathLike,
        dest_dir: PathLike,
        report: Optional[Reporter] = None,
    ) -> list[StatusMessage]:
        """Stitch all five channels of one acquisition folder.

        Args:
            folder: The acquisition folder
            dest_dir: Where the stitched PNGs go
            report: Called with each message as soon as it is produced

        Returns:
            One message per channel followed by a folder completion message
        """
        folder = pathlib.Path(folder)
        prefix = output_prefix(folder.name)
        messages: list[StatusMessage] = []

        def emit(message: StatusMessage) -> None:
            messages.append(message)
            if report is not None:
                report(message)

        try:
            tile_files = list_tile_files(folder, self.tile_order)
        except OSError as e:
            emit(
                StatusMessage(
                    StatusKind.tile_load_failure,
                    f"Failed to read acquisition folder {folder}: {e}",
                )
            )
            return messages

        logging.info(f"Processing {folder.name}: {len(tile_files)} tile files")
        groups = classify(tile_files)
        for channel, tiles in groups.items():
            emit(self.stitch_channel(tiles, dest_dir, channel_base_name(prefix, channel)))

        emit(
            StatusMessage(
                StatusKind.folder_complete,
                f"Stitched images for {prefix} saved to {dest_dir}",
                base_name=prefix,
            )
        )
        return messages

    def run(
        self, acquisition_folders: Sequence[PathLike], dest_dir: Optional[PathLike]
    ) -> list[StatusMessage]:
        """Stitch every acquisition folder into dest_dir.

        Folders whose name lacks the acquisition token are skipped. The last
        message is always the overall completion message, unless no
        destination was given at all.
        """
        messages: list[StatusMessage] = []

        def report(message: StatusMessage) -> None:
            messages.append(message)
            self.callbacks.status(message)

        if not dest_dir:
            report(
                StatusMessage.from_error(
                    NoSelectionError("to save all the stitched images to")
                )
            )
            return messages
        dest_dir = pathlib.Path(dest_dir)

        folders = []
        for folder in map(pathlib.Path, acquisition_folders):
            if is_acquisition_folder(folder.name, self.acquisition_token):
                folders.append(folder)
            else:
                logging.debug(f"Skipping {folder}: not an acquisition folder")

        if self.num_workers > 1 and len(folders) > 1:
            jobs = [(f, dest_dir, self.settings, self.tile_order) for f in folders]
            with multiprocessing.Pool(processes=min(self.num_workers, len(folders))) as pool:
                for folder_messages in tqdm(
                    pool.imap(_stitch_folder_worker, jobs),
                    total=len(jobs),
                    desc="Stitching acquisitions",
                    disable=None,
                ):
                    for message in folder_messages:
                        report(message)
        else:
            for folder in tqdm(folders, desc="Stitching acquisitions", disable=None):
                self.stitch_folder(folder, dest_dir, report)

        report(StatusMessage(StatusKind.run_complete, RUN_COMPLETE_TEXT))
        return messages

    def run_root(
        self, input_folder: Optional[PathLike], dest_dir: Optional[PathLike]
    ) -> list[StatusMessage]:
        """Stitch every acquisition folder directly below input_folder."""
        if not input_folder:
            message = StatusMessage.from_error(
                NoSelectionError("containing the images you want stitched")
            )
            self.callbacks.status(message)
            return [message]
        return self.run(discover_acquisition_folders(input_folder), dest_dir)
