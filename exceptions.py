"""Custom exception classes for the draft card reader.

Each pipeline stage has one base class. Per-region capture, preprocess and
recognition errors are recoverable: the orchestrator logs them and skips
that region. ``PipelineError`` is reserved for failures that stop the whole
pipeline before any capture happens.
"""

from typing import Any, Optional


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------


class CaptureError(Exception):
    """Base class for screen capture failures."""


class NoScreensAvailableError(CaptureError):
    """Raised when the display backend reports no displays."""

    def __init__(self) -> None:
        super().__init__("No screens available for capture")


class RegionOutOfBoundsError(CaptureError):
    """Raised when a region does not fit on the primary display.

    Args:
        region: The offending capture region.
        screen_width: Width of the primary display in pixels.
        screen_height: Height of the primary display in pixels.
    """

    def __init__(self, region: Any, screen_width: int, screen_height: int) -> None:
        self.region = region
        self.screen_width = screen_width
        self.screen_height = screen_height
        super().__init__(
            f"Capture region is outside screen bounds: {region} "
            f"does not fit in {screen_width}x{screen_height}"
        )


class InvalidRegionError(CaptureError):
    """Raised when a region has a zero or negative dimension."""

    def __init__(self, region: Any) -> None:
        self.region = region
        super().__init__(
            f"Invalid capture region (zero or negative dimensions): {region}"
        )


class CaptureFailedError(CaptureError):
    """Raised when the display backend fails to produce pixels."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Screen capture failed: {detail}")


# ---------------------------------------------------------------------------
# Preprocessing
# ---------------------------------------------------------------------------


class PreprocessError(Exception):
    """Base class for image preprocessing failures."""


class EmptyImageError(PreprocessError):
    """Raised when an input image has a zero dimension."""

    def __init__(self) -> None:
        super().__init__("Image is empty")


class InvalidImageError(PreprocessError):
    """Raised when an input array is not an image we can process."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Invalid image: {detail}")


class ProcessingFailedError(PreprocessError):
    """Raised when an image operation (e.g. writing a debug PNG) fails."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Processing failed: {detail}")


# ---------------------------------------------------------------------------
# Recognition
# ---------------------------------------------------------------------------


class RecognizeError(Exception):
    """Base class for OCR and name-matching failures."""


class EngineInitError(RecognizeError):
    """Raised when the text-recognition engine cannot be initialised."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"OCR engine initialization failed: {detail}")


class EngineError(RecognizeError):
    """Raised when the text-recognition engine fails on an image."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"OCR engine error: {detail}")


class NoCardNamesAvailableError(RecognizeError):
    """Raised when the name corpus is empty."""

    def __init__(self) -> None:
        super().__init__("No card names available for matching")


class InvalidOcrImageError(RecognizeError):
    """Raised when OCR is asked to read a zero-sized image."""

    def __init__(self) -> None:
        super().__init__("Invalid image for OCR")


class MatchingFailedError(RecognizeError):
    """Raised when OCR text cannot be matched to any card name."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Card matching failed: {detail}")


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class PipelineError(Exception):
    """Raised when the detection pipeline as a whole cannot run.

    Args:
        stage: The stage the failure came from (``"capture"``,
            ``"preprocess"``, ``"recognize"`` or ``"configuration"``).
        cause: The underlying stage exception, if any.
        message: Overrides the default message.
    """

    def __init__(
        self,
        stage: str,
        cause: Optional[Exception] = None,
        message: Optional[str] = None,
    ) -> None:
        self.stage = stage
        self.cause = cause
        if message is None:
            message = f"{stage.capitalize()} error: {cause}"
        super().__init__(message)


class ConfigurationError(PipelineError):
    """Raised for construction-time misconfiguration or bad settings files."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(
            "configuration", message=f"Configuration error: {detail}"
        )
