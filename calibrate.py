#!/usr/bin/env python3
"""Region calibration for the draft card reader.

``calibrate_regions`` probes the live display: it captures every configured
region (capture only, no OCR), counts successes and failures, and proposes
the default layout scaled to the current resolution.

Run as a script, this module is also the interactive calibration tool:

Subcommands::

    capture    Take labelled screenshots and track mouse position interactively.
    preview    Draw capture regions on a screenshot and save the annotated copy.
    probe      Capture every region once and print a calibration report.

The ``capture`` subcommand is the starting point: use it to capture reference
screenshots of the draft screen and measure where card names render.

Usage::

    python calibrate.py capture
    python calibrate.py preview debug/20260101_120000_draft.png
    python calibrate.py preview debug/shot.png --regions 350,200,300,60 810,200,300,60
    python calibrate.py probe
"""

import argparse
import logging
import sys
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence

import cv2
import numpy as np

from capture import (
    CaptureConfig,
    CaptureRegion,
    DisplayBackend,
    capture_region,
    create_display_backend,
    get_default_card_regions,
    get_primary_screen_dimensions,
    save_debug_screenshot,
    set_display_backend,
)
from config import BACKEND_CHOICES, DEBUG_DIR, DEFAULT_BACKEND, LOG_FORMAT
from exceptions import CaptureError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Calibration probe
# ---------------------------------------------------------------------------


@dataclass
class CalibrationReport:
    """Capture statistics for the current layout plus a recommended one."""

    screen_dimensions: tuple[int, int]
    regions_tested: int
    successful_captures: int
    failed_captures: int
    recommended_regions: list[CaptureRegion] = field(default_factory=list)

    @property
    def is_successful(self) -> bool:
        return self.failed_captures == 0 and self.successful_captures > 0

    @property
    def success_rate(self) -> float:
        """Percentage of tested regions captured successfully (0-100)."""
        total = self.successful_captures + self.failed_captures
        if total == 0:
            return 0.0
        return self.successful_captures / total * 100.0

    @property
    def message(self) -> str:
        if self.is_successful:
            return "Calibration successful! All regions can be captured."
        return (
            f"Calibration partial. {self.successful_captures}/"
            f"{self.regions_tested} regions captured successfully."
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.is_successful,
            "message": self.message,
            "screen_width": self.screen_dimensions[0],
            "screen_height": self.screen_dimensions[1],
            "regions_tested": self.regions_tested,
            "successful_captures": self.successful_captures,
            "failed_captures": self.failed_captures,
            "success_rate": self.success_rate,
            "recommended_regions": [r.to_dict() for r in self.recommended_regions],
        }


def calibrate_regions(
    capture_config: CaptureConfig,
    backend: Optional[DisplayBackend] = None,
) -> CalibrationReport:
    """Test-capture every configured region and recommend a layout.

    Never raises. If the display cannot be queried, the report has screen
    dimensions ``(0, 0)``, every region counts as failed, and the
    recommendation is scaled from the config's last known screen size.

    Args:
        capture_config: The layout to test.
        backend: Display backend; defaults to the config's own, then the
            process-wide one.
    """
    backend = backend or capture_config.backend
    regions = capture_config.get_regions()

    try:
        width, height = get_primary_screen_dimensions(backend)
    except CaptureError as exc:
        logger.warning("Cannot read screen dimensions: %s", exc)
        return CalibrationReport(
            screen_dimensions=(0, 0),
            regions_tested=len(regions),
            successful_captures=0,
            failed_captures=len(regions),
            recommended_regions=get_default_card_regions(
                capture_config.screen_width, capture_config.screen_height,
            ),
        )

    successful = 0
    failed = 0
    for i, region in enumerate(regions):
        try:
            capture_region(region, backend)
            successful += 1
        except CaptureError as exc:
            logger.info("Region %d %s failed: %s", i, region, exc)
            failed += 1

    report = CalibrationReport(
        screen_dimensions=(width, height),
        regions_tested=len(regions),
        successful_captures=successful,
        failed_captures=failed,
        recommended_regions=get_default_card_regions(width, height),
    )
    logger.info(
        "Calibration at %dx%d: %d/%d regions captured (%.0f%%)",
        width, height, successful, len(regions), report.success_rate,
    )
    return report


# ---------------------------------------------------------------------------
# Region drawing
# ---------------------------------------------------------------------------


def parse_region(text: str) -> CaptureRegion:
    """Parse ``"x,y,w,h"`` into a ``CaptureRegion``.

    Raises:
        argparse.ArgumentTypeError: If *text* is not four integers.
    """
    parts = text.split(",")
    if len(parts) != 4:
        raise argparse.ArgumentTypeError(
            f"expected x,y,width,height, got '{text}'"
        )
    try:
        x, y, w, h = (int(p.strip()) for p in parts)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"region values must be integers, got '{text}'"
        ) from None
    return CaptureRegion(x, y, w, h)


def draw_regions(
    frame: np.ndarray,
    regions: Sequence[CaptureRegion],
) -> np.ndarray:
    """Draw labelled rectangles for each region on a copy of *frame*.

    Args:
        frame: BGR image to annotate.
        regions: Regions in slot order.

    Returns:
        Annotated copy of *frame*.
    """
    annotated = frame.copy()
    for i, region in enumerate(regions):
        colour = (0, 0, 255) if region.is_valid() else (0, 165, 255)
        cv2.rectangle(
            annotated,
            (region.x, region.y),
            (region.x + region.width, region.y + region.height),
            colour,
            2,
        )
        cv2.putText(
            annotated,
            f"Slot {i} ({region.x},{region.y})",
            (region.x, max(region.y - 8, 12)),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.6,
            colour,
            2,
        )
    return annotated


# ---------------------------------------------------------------------------
# Capture subcommand
# ---------------------------------------------------------------------------


def _track_mouse() -> None:
    """Continuously print mouse position until Enter is pressed."""
    # Needs a display server; only imported for interactive use.
    import pyautogui

    print("  Tracking mouse position (press Enter to stop)...")
    stop = threading.Event()

    def printer() -> None:
        while not stop.is_set():
            x, y = pyautogui.position()
            print(f"\r  Mouse: ({x:4d}, {y:4d})  ", end="", flush=True)
            stop.wait(0.3)

    t = threading.Thread(target=printer, daemon=True)
    t.start()
    try:
        input()
    except EOFError:
        pass
    stop.set()
    t.join(timeout=1.0)
    print()


def cmd_capture(_args: argparse.Namespace) -> None:
    """Interactive screenshot capture and mouse position tracking.

    Verifies a display is available, then enters an interactive loop where
    the user can take labelled screenshots and check mouse coordinates.
    Open the draft screen in the game between captures.
    """
    try:
        width, height = get_primary_screen_dimensions()
    except CaptureError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    saved: list[Path] = []

    print()
    print("=" * 58)
    print("  Draft Card Reader Calibration: Capture Mode")
    print("=" * 58)
    print()
    print(f"Primary display: {width}x{height}")
    print()
    print("  <label>   Capture screenshot -> <timestamp>_<label>.png")
    print("  Enter     Print current mouse (x, y) position")
    print("  track     Continuously print mouse position (Enter to stop)")
    print("  list      Show screenshots saved this session")
    print("  quit      Exit")
    print()
    print(f"Screenshots saved to: {DEBUG_DIR}/")
    print()

    while True:
        try:
            cmd = input("capture> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break

        if not cmd:
            import pyautogui

            x, y = pyautogui.position()
            print(f"  Mouse: ({x}, {y})")
            continue

        if cmd in ("quit", "q", "exit"):
            break

        if cmd == "track":
            _track_mouse()
            continue

        if cmd == "list":
            if not saved:
                print("  No screenshots saved this session.")
            else:
                for p in saved:
                    print(f"  {p}")
            continue

        # Anything else is a label
        label = cmd.replace(" ", "_")
        try:
            filepath = save_debug_screenshot(label)
        except (CaptureError, OSError) as exc:
            print(f"  Capture failed: {exc}")
            continue
        saved.append(filepath)
        print(f"  Saved: {filepath}")

    print(f"\n{len(saved)} screenshot(s) saved to {DEBUG_DIR}/")


# ---------------------------------------------------------------------------
# Preview subcommand
# ---------------------------------------------------------------------------


def cmd_preview(args: argparse.Namespace) -> None:
    """Draw regions on a screenshot and write ``<source>_regions.png``.

    Without ``--regions`` the default layout is scaled to the screenshot's
    own resolution.
    """
    source = Path(args.source)
    if not source.exists():
        print(f"Error: source image not found: {source}")
        sys.exit(1)

    img = cv2.imread(str(source))
    if img is None:
        print(f"Error: could not read image: {source}")
        sys.exit(1)

    img_h, img_w = img.shape[:2]
    regions = args.regions or get_default_card_regions(img_w, img_h)

    for i, region in enumerate(regions):
        if (
            not region.is_valid()
            or region.x < 0
            or region.y < 0
            or region.x + region.width > img_w
            or region.y + region.height > img_h
        ):
            print(f"Warning: slot {i} {region} does not fit in {img_w}x{img_h}")

    annotated = draw_regions(img, regions)
    dest = Path(args.output) if args.output else source.with_name(
        f"{source.stem}_regions.png"
    )
    cv2.imwrite(str(dest), annotated)
    print(f"Preview saved: {dest}  ({len(regions)} region(s) on {img_w}x{img_h})")


# ---------------------------------------------------------------------------
# Probe subcommand
# ---------------------------------------------------------------------------


def cmd_probe(args: argparse.Namespace) -> None:
    """Capture the given (or default) regions once and print the report."""
    if args.regions:
        config = CaptureConfig(args.regions)
    else:
        try:
            config = CaptureConfig.from_screen()
        except CaptureError as exc:
            logger.warning("Falling back to reference layout: %s", exc)
            config = CaptureConfig()

    report = calibrate_regions(config)

    print(report.message)
    print(
        f"Screen: {report.screen_dimensions[0]}x{report.screen_dimensions[1]}  "
        f"success rate: {report.success_rate:.0f}%"
    )
    print("Recommended regions:")
    for i, region in enumerate(report.recommended_regions):
        print(f"  slot {i}: {region.x},{region.y},{region.width},{region.height}")

    if not report.is_successful:
        sys.exit(1)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Parse the subcommand and dispatch."""
    parser = argparse.ArgumentParser(
        description="Region calibration tool for the draft card reader.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Typical workflow:\n"
            "  1. python calibrate.py capture\n"
            "     Open the draft screen, take a screenshot and use 'track' /\n"
            "     Enter to measure where each card name renders.\n"
            "  2. python calibrate.py preview debug/<shot>.png"
            " --regions X,Y,W,H ...\n"
            "     Check the measured regions against the screenshot.\n"
            "  3. draft-card-reader regions set X,Y,W,H ...\n"
            "  4. python calibrate.py probe\n"
            "     Confirm every region can be captured."
        ),
    )
    parser.add_argument(
        "--backend",
        choices=BACKEND_CHOICES,
        default=DEFAULT_BACKEND,
        help=f"Display backend (default: {DEFAULT_BACKEND})",
    )
    subparsers = parser.add_subparsers(dest="command")

    # capture ---
    subparsers.add_parser(
        "capture",
        help="Interactive screenshot capture and mouse position tracking",
        description=(
            "Take labelled screenshots of the primary display and track "
            "mouse position. Use this to measure where card names render on "
            "the draft screen."
        ),
    )

    # preview ---
    preview_parser = subparsers.add_parser(
        "preview",
        help="Draw capture regions on a screenshot",
        description=(
            "Draw the given regions (or the default layout scaled to the "
            "screenshot) on a copy of the screenshot."
        ),
    )
    preview_parser.add_argument("source", help="Path to the source screenshot")
    preview_parser.add_argument(
        "--regions",
        nargs="+",
        type=parse_region,
        help="Regions as x,y,width,height (default: scaled default layout)",
    )
    preview_parser.add_argument(
        "--output", help="Output path (default: <source>_regions.png)",
    )

    # probe ---
    probe_parser = subparsers.add_parser(
        "probe",
        help="Capture every region once and print a calibration report",
    )
    probe_parser.add_argument(
        "--regions",
        nargs="+",
        type=parse_region,
        help="Regions as x,y,width,height (default: layout for this screen)",
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return

    if args.command == "probe":
        logging.basicConfig(
            level=logging.DEBUG,
            format=LOG_FORMAT,
        )
    else:
        # Minimal logging for interactive mode
        logging.basicConfig(level=logging.WARNING)

    set_display_backend(create_display_backend(args.backend))

    if args.command == "capture":
        cmd_capture(args)
    elif args.command == "preview":
        cmd_preview(args)
    elif args.command == "probe":
        cmd_probe(args)


if __name__ == "__main__":
    main()
