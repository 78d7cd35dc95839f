"""Region model and screen capture for the draft card reader.

Uses ``mss`` to capture card-name regions of the primary display as numpy
arrays. All capture operations go through this module; no other module
should import ``mss`` directly.

The pixel source is a pluggable ``DisplayBackend``: ``MssDisplayBackend``
reads the live screen, ``StubDisplayBackend`` returns blank frames so the
rest of the pipeline can run without a display.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Union

import cv2
import mss
import mss.exception
import numpy as np

from config import (
    BACKEND_LIVE,
    BACKEND_STUB,
    BASE_CARD_REGIONS,
    DEBUG_DIR,
    DEFAULT_BACKEND,
    REFERENCE_HEIGHT,
    REFERENCE_WIDTH,
    STUB_SCREEN_HEIGHT,
    STUB_SCREEN_WIDTH,
)
from exceptions import (
    CaptureError,
    CaptureFailedError,
    ConfigurationError,
    InvalidRegionError,
    NoScreensAvailableError,
    RegionOutOfBoundsError,
)

logger = logging.getLogger(__name__)

CaptureOutcome = Union[np.ndarray, CaptureError]


# ---------------------------------------------------------------------------
# Region model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CaptureRegion:
    """A rectangle of the primary display, in screen pixels."""

    x: int
    y: int
    width: int
    height: int

    def is_valid(self) -> bool:
        """Return True if the region has positive width and height."""
        return self.width > 0 and self.height > 0

    def contains(self, px: int, py: int) -> bool:
        """Return True if ``(px, py)`` lies in ``[x, x+w) x [y, y+h)``."""
        return (
            self.x <= px < self.x + self.width
            and self.y <= py < self.y + self.height
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CaptureRegion":
        return cls(
            int(data["x"]),
            int(data["y"]),
            int(data["width"]),
            int(data["height"]),
        )

    def __str__(self) -> str:
        return f"Region(x={self.x}, y={self.y}, w={self.width}, h={self.height})"


# ---------------------------------------------------------------------------
# Display backends
# ---------------------------------------------------------------------------


class DisplayBackend:
    """Source of displays and raw pixels.

    ``list_displays`` returns geometry dicts (``left``, ``top``, ``width``,
    ``height``) with the primary display first. ``grab`` returns a BGRA
    array of shape ``(region.height, region.width, 4)`` for a region given
    relative to *display*.
    """

    name = "base"

    def list_displays(self) -> list[dict[str, int]]:
        raise NotImplementedError

    def grab(self, display: Mapping[str, int], region: CaptureRegion) -> np.ndarray:
        raise NotImplementedError


class MssDisplayBackend(DisplayBackend):
    """Live backend reading the screen through ``mss``."""

    name = BACKEND_LIVE

    def list_displays(self) -> list[dict[str, int]]:
        try:
            with mss.mss() as sct:
                # monitors[0] is the virtual screen spanning all displays.
                monitors = list(sct.monitors[1:])
        except mss.exception.ScreenShotError as exc:
            raise CaptureFailedError(str(exc)) from exc
        return [
            {
                "left": m["left"],
                "top": m["top"],
                "width": m["width"],
                "height": m["height"],
            }
            for m in monitors
        ]

    def grab(self, display: Mapping[str, int], region: CaptureRegion) -> np.ndarray:
        geometry = {
            "left": display["left"] + region.x,
            "top": display["top"] + region.y,
            "width": region.width,
            "height": region.height,
        }
        try:
            with mss.mss() as sct:
                screenshot = sct.grab(geometry)
        except mss.exception.ScreenShotError as exc:
            raise CaptureFailedError(str(exc)) from exc
        # mss returns BGRA.
        return np.array(screenshot, dtype=np.uint8)


class StubDisplayBackend(DisplayBackend):
    """Deterministic backend: one fixed-size display, all-white frames."""

    name = BACKEND_STUB

    def __init__(
        self,
        width: int = STUB_SCREEN_WIDTH,
        height: int = STUB_SCREEN_HEIGHT,
    ) -> None:
        self.width = width
        self.height = height

    def list_displays(self) -> list[dict[str, int]]:
        return [{"left": 0, "top": 0, "width": self.width, "height": self.height}]

    def grab(self, display: Mapping[str, int], region: CaptureRegion) -> np.ndarray:
        return np.full((region.height, region.width, 4), 255, dtype=np.uint8)


_display_backend: Optional[DisplayBackend] = None


def create_display_backend(name: str) -> DisplayBackend:
    """Build a display backend by name (``"live"`` or ``"stub"``).

    Raises:
        ConfigurationError: If *name* is not a known backend.
    """
    if name == BACKEND_LIVE:
        return MssDisplayBackend()
    if name == BACKEND_STUB:
        return StubDisplayBackend()
    raise ConfigurationError(f"Unknown display backend '{name}'")


def get_display_backend() -> DisplayBackend:
    """Return the process-wide display backend, creating it on first use."""
    global _display_backend
    if _display_backend is None:
        _display_backend = create_display_backend(DEFAULT_BACKEND)
        logger.info("Using '%s' display backend", _display_backend.name)
    return _display_backend


def set_display_backend(backend: Optional[DisplayBackend]) -> None:
    """Install *backend* as the process-wide default (None resets it)."""
    global _display_backend
    _display_backend = backend


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------


def _primary_display(backend: DisplayBackend) -> dict[str, int]:
    displays = backend.list_displays()
    if not displays:
        raise NoScreensAvailableError()
    return displays[0]


def get_primary_screen_dimensions(
    backend: Optional[DisplayBackend] = None,
) -> tuple[int, int]:
    """Return ``(width, height)`` of the primary display.

    Raises:
        NoScreensAvailableError: If no display is available.
        CaptureFailedError: If the backend cannot enumerate displays.
    """
    backend = backend or get_display_backend()
    display = _primary_display(backend)
    return display["width"], display["height"]


def capture_region(
    region: CaptureRegion,
    backend: Optional[DisplayBackend] = None,
) -> np.ndarray:
    """Capture one region of the primary display.

    Args:
        region: Area to capture, relative to the primary display origin.
        backend: Display backend; defaults to the process-wide one.

    Returns:
        A ``uint8`` array of shape ``(region.height, region.width, 4)`` in
        BGRA colour order.

    Raises:
        InvalidRegionError: If the region has a zero dimension.
        NoScreensAvailableError: If no display is available.
        RegionOutOfBoundsError: If the region does not fit on the display.
        CaptureFailedError: If the backend fails or returns a wrong shape.
    """
    if not region.is_valid():
        raise InvalidRegionError(region)

    backend = backend or get_display_backend()
    display = _primary_display(backend)
    screen_width, screen_height = display["width"], display["height"]

    if (
        region.x < 0
        or region.y < 0
        or region.x + region.width > screen_width
        or region.y + region.height > screen_height
    ):
        raise RegionOutOfBoundsError(region, screen_width, screen_height)

    try:
        frame = backend.grab(display, region)
    except CaptureError:
        raise
    except (OSError, ValueError) as exc:
        raise CaptureFailedError(str(exc)) from exc

    expected = (region.height, region.width, 4)
    if frame.shape != expected:
        raise CaptureFailedError(
            f"unexpected capture dimensions: expected {expected}, "
            f"got {frame.shape}"
        )

    logger.debug("Captured %s", region)
    return frame


def capture_multiple_regions(
    regions: Sequence[CaptureRegion],
    backend: Optional[DisplayBackend] = None,
) -> list[CaptureOutcome]:
    """Capture each region independently.

    A failure in one region never prevents capturing the others: the
    returned list has one entry per input region, in order, holding either
    the captured image or the ``CaptureError`` raised for that region.
    """
    backend = backend or get_display_backend()
    results: list[CaptureOutcome] = []
    for region in regions:
        try:
            results.append(capture_region(region, backend))
        except CaptureError as exc:
            logger.debug("Capture of %s failed: %s", region, exc)
            results.append(exc)
    return results


def get_default_card_regions(
    screen_width: int,
    screen_height: int,
) -> list[CaptureRegion]:
    """Scale the 1920x1080 base card-name layout to another resolution.

    Regions are assumed to sit at resolution-proportional positions, so
    every coordinate and dimension is multiplied by
    ``screen_width / REFERENCE_WIDTH`` (x, width) or
    ``screen_height / REFERENCE_HEIGHT`` (y, height) and truncated.
    """
    scale_x = screen_width / REFERENCE_WIDTH
    scale_y = screen_height / REFERENCE_HEIGHT
    return [
        CaptureRegion(
            int(x * scale_x),
            int(y * scale_y),
            int(w * scale_x),
            int(h * scale_y),
        )
        for x, y, w, h in BASE_CARD_REGIONS
    ]


class CaptureConfig:
    """The active region layout and the screen size it was computed for.

    ``CaptureConfig()`` uses the reference resolution without touching the
    display; ``from_screen()`` and ``with_regions()`` probe the live screen.
    """

    def __init__(
        self,
        regions: Optional[Sequence[CaptureRegion]] = None,
        screen_width: int = REFERENCE_WIDTH,
        screen_height: int = REFERENCE_HEIGHT,
        backend: Optional[DisplayBackend] = None,
    ) -> None:
        if regions is None:
            regions = get_default_card_regions(screen_width, screen_height)
        self.regions: list[CaptureRegion] = list(regions)
        self.screen_width = screen_width
        self.screen_height = screen_height
        self.backend = backend

    @classmethod
    def from_screen(cls, backend: Optional[DisplayBackend] = None) -> "CaptureConfig":
        """Default regions for the current primary display size."""
        width, height = get_primary_screen_dimensions(backend)
        return cls(
            get_default_card_regions(width, height), width, height, backend,
        )

    @classmethod
    def with_regions(
        cls,
        regions: Sequence[CaptureRegion],
        backend: Optional[DisplayBackend] = None,
    ) -> "CaptureConfig":
        """Caller-supplied regions, recorded against the current screen size."""
        width, height = get_primary_screen_dimensions(backend)
        return cls(regions, width, height, backend)

    def update_regions(self, regions: Sequence[CaptureRegion]) -> None:
        self.regions = list(regions)
        logger.info("Capture regions updated (%d region(s))", len(self.regions))

    def get_regions(self) -> tuple[CaptureRegion, ...]:
        return tuple(self.regions)

    def refresh_screen_dimensions(self) -> tuple[int, int]:
        """Re-read the primary display size; regions are left untouched."""
        self.screen_width, self.screen_height = get_primary_screen_dimensions(
            self.backend,
        )
        return self.screen_width, self.screen_height

    def capture_all(self) -> list[CaptureOutcome]:
        return capture_multiple_regions(self.regions, self.backend)

    def copy(self) -> "CaptureConfig":
        return CaptureConfig(
            self.regions, self.screen_width, self.screen_height, self.backend,
        )

    def __repr__(self) -> str:
        return (
            f"CaptureConfig(regions={self.regions!r}, "
            f"screen={self.screen_width}x{self.screen_height})"
        )


# ---------------------------------------------------------------------------
# Debug screenshots
# ---------------------------------------------------------------------------


def save_debug_screenshot(
    context: str,
    backend: Optional[DisplayBackend] = None,
    directory: Optional[Path] = None,
) -> Path:
    """Save a timestamped screenshot of the primary display.

    Args:
        context: A short label included in the filename to identify what
            triggered the screenshot (e.g. ``"calibrate_left"``).
        backend: Display backend; defaults to the process-wide one.
        directory: Output directory; defaults to ``DEBUG_DIR``.

    Returns:
        The path to the saved PNG file.

    Raises:
        CaptureError: If the display cannot be captured.
        OSError: If the PNG cannot be written.
    """
    directory = directory or DEBUG_DIR
    directory.mkdir(parents=True, exist_ok=True)

    width, height = get_primary_screen_dimensions(backend)
    frame = capture_region(CaptureRegion(0, 0, width, height), backend)

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    filepath = directory / f"{timestamp}_{context}.png"

    # Drop alpha channel for a plain BGR PNG.
    if not cv2.imwrite(str(filepath), frame[:, :, :3]):
        raise OSError(f"Could not write screenshot: {filepath}")
    logger.info("Debug screenshot saved: %s", filepath)
    return filepath
