"""Command-line entry point for the draft card reader.

Loads the saved detection options, wires up the display and text backends,
and dispatches one command through ``CardReaderService``:

    detect        Read the card names currently on screen.
    calibrate     Probe every region and recommend a layout.
    regions       Show, set or reset the capture regions.
    tune          Adjust the confidence gate and the debug-image flag.
    test-region   Read and match one ad hoc rectangle.

Commands that change options (``regions set/reset``, ``tune``,
``calibrate --apply``) write them back to the settings file. Any failure
exits with status 1.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from calibrate import parse_region
from capture import create_display_backend, set_display_backend
from config import (
    BACKEND_CHOICES,
    CORPUS_PATH,
    DEFAULT_BACKEND,
    LOG_FORMAT,
    SETTINGS_PATH,
)
from corpus import load_corpus
from exceptions import (
    CaptureError,
    ConfigurationError,
    PreprocessError,
    RecognizeError,
)
from recognize import create_text_backend, set_text_backend
from service import CardReaderService
from settings_store import load_options, save_options

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool, log_file: Optional[str]) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
    )


def _save(service: CardReaderService, args: argparse.Namespace) -> None:
    path = save_options(service.options, args.settings)
    print(f"Settings saved to {path}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_detect(service: CardReaderService, args: argparse.Namespace) -> int:
    result = service.detect_once()

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
        return 0 if result.success else 1

    if not result.success:
        print(f"Detection failed: {result.error_message}")
        return 1
    if result.is_empty():
        print("No cards detected.")
        return 0

    for card in result.detected_cards:
        print(
            f"  {card.card_name:<30} id={card.card_id:<24} "
            f"confidence={card.overall_confidence:.2f} "
            f"(ocr={card.ocr_confidence}, match={card.match_score})  {card.region}"
        )
    print(f"{len(result)} card(s), average confidence {result.average_confidence:.2f}")
    return 0


def cmd_calibrate(service: CardReaderService, args: argparse.Namespace) -> int:
    report = service.calibrate()
    width, height = report.screen_dimensions

    print(report.message)
    print(f"Screen: {width}x{height}  success rate: {report.success_rate:.0f}%")
    print("Recommended regions:")
    for i, region in enumerate(report.recommended_regions):
        print(f"  slot {i}: {region.x},{region.y},{region.width},{region.height}")

    if args.apply:
        update = service.set_regions(report.recommended_regions)
        print(update.message)
        _save(service, args)
    return 0 if report.is_successful else 1


def cmd_regions(service: CardReaderService, args: argparse.Namespace) -> int:
    if args.regions_command == "set":
        update = service.set_regions(args.regions)
    elif args.regions_command == "reset":
        update = service.reset_regions()
    else:
        for i, region in enumerate(service.get_regions()):
            print(f"  slot {i}: {region.x},{region.y},{region.width},{region.height}")
        return 0

    print(update.message)
    if not update.success:
        return 1
    _save(service, args)
    return 0


def cmd_tune(service: CardReaderService, args: argparse.Namespace) -> int:
    try:
        service.update_config(args.min_confidence, args.save_debug)
    except ConfigurationError as exc:
        print(f"Tune failed: {exc}")
        return 1
    options = service.options
    print(
        f"min_overall_confidence={options.min_overall_confidence:.2f} "
        f"save_debug_images={options.save_debug_images}"
    )
    _save(service, args)
    return 0


def cmd_test_region(service: CardReaderService, args: argparse.Namespace) -> int:
    try:
        card = service.test_region(args.x, args.y, args.width, args.height)
    except (CaptureError, PreprocessError, RecognizeError) as exc:
        print(f"Test failed: {exc}")
        return 1

    print(f"Raw text:   {card.raw_ocr_text!r}")
    print(f"Card:       {card.card_name} (id={card.card_id})")
    print(
        f"Confidence: {card.overall_confidence:.2f} "
        f"(ocr={card.ocr_confidence}, match={card.match_score})"
    )
    return 0


COMMANDS = {
    "detect": cmd_detect,
    "calibrate": cmd_calibrate,
    "regions": cmd_regions,
    "tune": cmd_tune,
    "test-region": cmd_test_region,
}

# Commands that run OCR and so need a card corpus and a text backend.
OCR_COMMANDS = ("detect", "test-region")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="draft-card-reader",
        description="Read draft card names from the screen.",
    )
    parser.add_argument(
        "--backend",
        choices=BACKEND_CHOICES,
        default=DEFAULT_BACKEND,
        help=f"Display and OCR backend (default: {DEFAULT_BACKEND})",
    )
    parser.add_argument(
        "--settings",
        type=Path,
        default=SETTINGS_PATH,
        help=f"Settings file (default: {SETTINGS_PATH})",
    )
    parser.add_argument(
        "--corpus",
        type=Path,
        default=CORPUS_PATH,
        help=f"Card database or JSON name list (default: {CORPUS_PATH})",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--log-file", help="Also write logs to this file")

    subparsers = parser.add_subparsers(dest="command", required=True)

    detect_parser = subparsers.add_parser("detect", help="Detect cards on screen")
    detect_parser.add_argument("--json", action="store_true", help="Print JSON")

    calibrate_parser = subparsers.add_parser(
        "calibrate", help="Probe the capture regions",
    )
    calibrate_parser.add_argument(
        "--apply", action="store_true", help="Adopt the recommended regions",
    )

    regions_parser = subparsers.add_parser("regions", help="Manage capture regions")
    regions_sub = regions_parser.add_subparsers(dest="regions_command", required=True)
    regions_sub.add_parser("show", help="List the current regions")
    set_parser = regions_sub.add_parser("set", help="Replace the regions")
    set_parser.add_argument(
        "regions", nargs="+", type=parse_region, help="Regions as x,y,width,height",
    )
    regions_sub.add_parser("reset", help="Default regions for this screen")

    tune_parser = subparsers.add_parser("tune", help="Adjust detection settings")
    tune_parser.add_argument(
        "--min-confidence", type=float, help="Overall confidence gate (0-1)",
    )
    tune_parser.add_argument(
        "--save-debug",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Save preprocessed region images",
    )

    test_parser = subparsers.add_parser("test-region", help="Read one rectangle")
    for name in ("x", "y", "width", "height"):
        test_parser.add_argument(name, type=int)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Parse arguments, build the service and run one command."""
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose, args.log_file)

    try:
        display_backend = create_display_backend(args.backend)
        set_display_backend(display_backend)
        options = load_options(args.settings, display_backend)

        corpus = []
        if args.command in OCR_COMMANDS:
            corpus = load_corpus(args.corpus)
            set_text_backend(
                create_text_backend(args.backend, options.recognize.tesseract_cmd)
            )
    except (ConfigurationError, RecognizeError) as exc:
        logger.error("%s", exc)
        return 1

    service = CardReaderService(lambda: corpus, options)
    return COMMANDS[args.command](service, args)


if __name__ == "__main__":
    sys.exit(main())
