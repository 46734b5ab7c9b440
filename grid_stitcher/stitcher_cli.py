import argparse
import logging
import sys
from typing import Optional

from pydantic_settings import CliApp

from grid_stitcher.acquisition import AcquisitionStitcher
from grid_stitcher.parameters import StitchingParameters
from grid_stitcher.status import StatusMessage


def _params_file_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="grid-stitcher", add_help=False)
    parser.add_argument(
        "--params-file", help="Load every stitching parameter from this JSON file."
    )
    parser.add_argument(
        "--save-params-file", help="Write the parameters used for this run to this JSON file."
    )
    return parser


def parse_parameters(args: list[str]) -> tuple[StitchingParameters, Optional[str]]:
    """Parse the command line into parameters and an optional save path.

    Parameters come either from `--params-file` or from the individual flags,
    never from both.
    """
    parser = _params_file_parser()
    known, remaining = parser.parse_known_args(args)
    if known.params_file is not None:
        if remaining:
            parser.error(f"--params-file can't be combined with {' '.join(remaining)}")
        params = StitchingParameters.from_json_file(known.params_file)
    else:
        params = CliApp.run(StitchingParameters, cli_args=remaining)
    return params, known.save_params_file


def main(args: Optional[list[str]] = None) -> list[StatusMessage]:
    params, save_params_file = parse_parameters(sys.argv[1:] if args is None else args)
    log_level = logging.DEBUG if params.verbose else logging.INFO
    logging.basicConfig(level=log_level)
    # PIL logs every chunk it decodes at debug level
    logging.getLogger("PIL").setLevel(logging.INFO)

    if save_params_file:
        params.to_json_file(save_params_file)
        logging.info(f"Saved parameters to {save_params_file}")

    stitcher = AcquisitionStitcher.from_parameters(params)
    messages = stitcher.run_root(params.input_folder, params.stitched_folder)
    for message in messages:
        if message.is_error:
            logging.error(message.text)
        else:
            logging.info(message.text)
    return messages


def cli() -> None:
    main(sys.argv[1:])


if __name__ == "__main__":
    cli()
