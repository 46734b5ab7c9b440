"""Human-readable status messages reported back to whoever drives a stitch run."""

import enum
import pathlib
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .errors import StitchError


class StatusKind(enum.Enum):
    no_selection = "no_selection"
    wrong_tile_count = "wrong_tile_count"
    tile_load_failure = "tile_load_failure"
    dimension_mismatch = "dimension_mismatch"
    write_failure = "write_failure"
    channel_stitched = "channel_stitched"
    folder_complete = "folder_complete"
    run_complete = "run_complete"
    images_saved = "images_saved"

    @property
    def is_error(self) -> bool:
        return self in _ERROR_KINDS


_ERROR_KINDS = frozenset(
    {
        StatusKind.no_selection,
        StatusKind.wrong_tile_count,
        StatusKind.tile_load_failure,
        StatusKind.dimension_mismatch,
        StatusKind.write_failure,
    }
)


@dataclass(frozen=True)
class StatusMessage:
    kind: StatusKind
    text: str
    """The message shown to the user."""
    base_name: Optional[str] = None
    """Output base name of the channel this message is about, if any."""
    output_path: Optional[pathlib.Path] = None
    """The file that was written, for successful stitches."""

    @property
    def is_error(self) -> bool:
        return self.kind.is_error

    @classmethod
    def from_error(
        cls, error: "StitchError", base_name: Optional[str] = None
    ) -> "StatusMessage":
        return cls(error.status_kind, str(error), base_name=base_name)

    def __str__(self) -> str:
        return self.text
