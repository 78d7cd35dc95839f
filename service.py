"""Command surface for the UI / CLI layer.

``CardReaderService`` owns the shared ``DetectionOptions`` (region layout,
thresholds, debug flag) behind a single lock. Every read and write of the
options takes the lock; a detection run works on a snapshot taken under the
lock, so slow capture and OCR calls never hold it.

Commands report failures in their return values (``CardDetectionResult``,
``RegionUpdate``) rather than raising, except for the single-region
diagnostic, which raises when nothing matches.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from calibrate import CalibrationReport, calibrate_regions
from capture import (
    CaptureRegion,
    capture_region,
    get_default_card_regions,
    get_primary_screen_dimensions,
)
from exceptions import CaptureError, MatchingFailedError, PipelineError
from pipeline import (
    CardDetectionResult,
    DetectedCard,
    DetectionOptions,
    OcrPipeline,
    clamp_confidence_gate,
)
from preprocess import preprocess_for_ocr
from recognize import CardMatcher, CardName, OcrEngine, TextBackend

logger = logging.getLogger(__name__)

CorpusProvider = Callable[[], Sequence[CardName]]


@dataclass(frozen=True)
class RegionUpdate:
    """Result of replacing or resetting the region layout."""

    success: bool
    message: str
    regions_set: int


class CardReaderService:
    """Lock-guarded detection state plus the commands exposed to callers.

    Args:
        corpus_provider: Returns the current ``(card_id, card_name)`` list;
            called on every detection so corpus changes are picked up.
        options: Initial options; defaults for the reference resolution.
        text_backend: OCR backend for all runs; defaults to the
            process-wide one.
    """

    def __init__(
        self,
        corpus_provider: CorpusProvider,
        options: Optional[DetectionOptions] = None,
        text_backend: Optional[TextBackend] = None,
    ) -> None:
        self._corpus_provider = corpus_provider
        self._options = options or DetectionOptions()
        self._text_backend = text_backend
        self._lock = threading.Lock()

    @property
    def options(self) -> DetectionOptions:
        with self._lock:
            return self._options.snapshot()

    # -- detection ---------------------------------------------------------

    def detect_once(self) -> CardDetectionResult:
        """Run the full pipeline once. Never raises."""
        card_names = list(self._corpus_provider())
        if not card_names:
            return CardDetectionResult.failed("No cards available for matching")

        options = self.options
        try:
            pipeline = OcrPipeline(card_names, options, self._text_backend)
        except PipelineError as exc:
            logger.error("Failed to initialize OCR pipeline: %s", exc)
            return CardDetectionResult.failed(f"Failed to initialize OCR: {exc}")

        return pipeline.detect_cards()

    def test_region(self, x: int, y: int, width: int, height: int) -> DetectedCard:
        """Capture, preprocess, read and match one ad hoc rectangle.

        There is no OCR-confidence gate and any positive match score counts,
        so this shows what the pipeline sees even when detection rejects it.

        Raises:
            CaptureError: If the region cannot be captured.
            PreprocessError: If the capture is empty.
            RecognizeError: If OCR fails, the corpus is empty, or
                (``MatchingFailedError``) no card matches.
        """
        options = self.options
        region = CaptureRegion(x, y, width, height)

        frame = capture_region(region, options.capture.backend)
        gray = preprocess_for_ocr(frame, options.preprocess)

        matcher = CardMatcher(list(self._corpus_provider()), min_score=0)
        ocr_result = OcrEngine(options.recognize, self._text_backend).recognize(gray)
        match = matcher.find_best_match(ocr_result.text)
        if match is None:
            raise MatchingFailedError("No matching card found")

        match = match.with_ocr_confidence(ocr_result.confidence)
        return DetectedCard(
            card_id=match.card_id,
            card_name=match.card_name,
            region=region,
            ocr_confidence=match.ocr_confidence,
            match_score=match.match_score,
            overall_confidence=match.overall_confidence,
            raw_ocr_text=ocr_result.text,
        )

    # -- calibration -------------------------------------------------------

    def calibrate(self) -> CalibrationReport:
        with self._lock:
            capture_config = self._options.capture.copy()
        return calibrate_regions(capture_config)

    # -- regions -----------------------------------------------------------

    def get_regions(self) -> list[CaptureRegion]:
        with self._lock:
            return list(self._options.capture.get_regions())

    def set_regions(self, regions: Sequence[CaptureRegion]) -> RegionUpdate:
        regions = list(regions)
        with self._lock:
            self._options.capture.update_regions(regions)
        return RegionUpdate(True, f"Set {len(regions)} capture regions", len(regions))

    def reset_regions(self) -> RegionUpdate:
        """Replace the layout with the defaults for the live screen size."""
        with self._lock:
            capture = self._options.capture
            try:
                width, height = get_primary_screen_dimensions(capture.backend)
            except CaptureError as exc:
                return RegionUpdate(
                    False, f"Failed to get screen dimensions: {exc}", 0,
                )
            regions = get_default_card_regions(width, height)
            capture.update_regions(regions)
            capture.screen_width, capture.screen_height = width, height
        return RegionUpdate(
            True,
            f"Reset to {len(regions)} default regions for {width}x{height}",
            len(regions),
        )

    # -- tuning ------------------------------------------------------------

    def update_config(
        self,
        min_confidence: Optional[float] = None,
        save_debug: Optional[bool] = None,
    ) -> None:
        """Adjust the overall-confidence gate (clamped to 0-1) and debug flag.

        Raises:
            ConfigurationError: If *min_confidence* is NaN or infinite.
                Nothing is changed.
        """
        gate = None
        if min_confidence is not None:
            gate = clamp_confidence_gate(min_confidence)
        with self._lock:
            if gate is not None:
                self._options.min_overall_confidence = gate
            if save_debug is not None:
                self._options.save_debug_images = save_debug
            logger.info(
                "Config updated: min_overall_confidence=%.2f save_debug_images=%s",
                self._options.min_overall_confidence,
                self._options.save_debug_images,
            )
