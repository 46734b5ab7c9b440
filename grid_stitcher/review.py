"""Headless model for sorting stitched images into good and bad piles.

A front end shows `ReviewSession.items` as thumbnails and calls the mark,
toggle and remove handlers in response to user input. Marked images are
exported at full resolution with `save_marked`.
"""

import enum
import logging
import os
import pathlib
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import tifffile

from .errors import NoSelectionError, PathLike, StitchError, WriteError
from .image_loaders import find_image_files, load_tile, make_thumbnail
from .status import StatusKind, StatusMessage

logger = logging.getLogger(__name__)

THUMBNAIL_SIZE_PX = 220


class ReviewMark(enum.Enum):
    unmarked = "unmarked"
    good = "good"
    bad = "bad"


@dataclass(eq=False)
class ReviewItem:
    path: pathlib.Path
    thumbnail: np.ndarray = field(repr=False)
    mark: ReviewMark = ReviewMark.unmarked

    def toggle(self) -> ReviewMark:
        """Flip between good and bad; unmarked items become good."""
        self.mark = ReviewMark.bad if self.mark == ReviewMark.good else ReviewMark.good
        return self.mark

    @property
    def export_stem(self) -> str:
        return self.path.name.split(".", 1)[0]


class ReviewSession:
    def __init__(self, thumbnail_size_px: int = THUMBNAIL_SIZE_PX):
        self.thumbnail_size_px = thumbnail_size_px
        self.items: list[ReviewItem] = []

    def add_folder(self, folder: PathLike) -> list[ReviewItem]:
        """Add every .tif/.png below folder as an unmarked item.

        Files that can't be decoded are logged and skipped.
        """
        added = []
        for path in find_image_files(folder):
            try:
                image = load_tile(path)
            except StitchError as e:
                logger.warning(f"Skipping unreadable image: {e}")
                continue
            item = ReviewItem(path, make_thumbnail(image, self.thumbnail_size_px))
            self.items.append(item)
            added.append(item)
        logger.info(f"Added {len(added)} images from {folder} for review")
        return added

    def mark(self, item: ReviewItem, mark: ReviewMark) -> None:
        item.mark = mark

    def toggle(self, item: ReviewItem) -> ReviewMark:
        return item.toggle()

    def remove(self, item: ReviewItem) -> None:
        self.items.remove(item)

    def items_with_mark(self, mark: ReviewMark) -> list[ReviewItem]:
        return [item for item in self.items if item.mark == mark]

    def visible_items(self, show_good: bool = True, show_bad: bool = True) -> list[ReviewItem]:
        """Items to display given the good/bad visibility filters.

        Unmarked items are always shown.
        """
        hidden = set()
        if not show_good:
            hidden.add(ReviewMark.good)
        if not show_bad:
            hidden.add(ReviewMark.bad)
        return [item for item in self.items if item.mark not in hidden]

    def export_path(self, item: ReviewItem, dest_dir: PathLike) -> pathlib.Path:
        return pathlib.Path(dest_dir) / f"{item.export_stem}_{item.mark.value}.tif"

    def save_marked(
        self, mark: ReviewMark, dest_dir: Optional[PathLike]
    ) -> list[StatusMessage]:
        """Write every item with the given mark to dest_dir as a TIFF.

        Each failure is reported and the remaining items are still saved. The
        final message always confirms the export finished.
        """
        if mark == ReviewMark.unmarked:
            raise ValueError("Only good or bad images can be saved")
        if not dest_dir:
            return [
                StatusMessage.from_error(
                    NoSelectionError(f"to save the {mark.value} images to")
                )
            ]

        messages = []
        for item in self.items_with_mark(mark):
            output_path = self.export_path(item, dest_dir)
            try:
                image = load_tile(item.path)
                os.makedirs(output_path.parent, exist_ok=True)
                tifffile.imwrite(output_path, image)
            except (StitchError, OSError) as e:
                error = WriteError(output_path, str(e))
                logger.error(str(error))
                messages.append(StatusMessage.from_error(error))
                continue
            logger.debug(f"Saved {item.path.name} to {output_path}")

        messages.append(
            StatusMessage(
                StatusKind.images_saved, f"{mark.value.capitalize()} images saved."
            )
        )
        return messages
