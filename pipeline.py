"""Card detection pipeline: capture -> preprocess -> recognize, per region.

Each configured region is processed independently. A capture, preprocessing
or recognition failure in one region is logged and that region is skipped;
the run still returns whatever the other regions produced. Only
construction-time failures (empty corpus, OCR engine unavailable) stop the
pipeline, and they do so before anything is captured.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional, Sequence

from capture import CaptureConfig, CaptureRegion
from config import MIN_OVERALL_CONFIDENCE
from exceptions import (
    CaptureError,
    ConfigurationError,
    PipelineError,
    PreprocessError,
    RecognizeError,
)
from preprocess import PreprocessConfig, preprocess_for_ocr, save_debug_image
from recognize import CardName, RecognitionPipeline, RecognizeConfig, TextBackend

logger = logging.getLogger(__name__)


def clamp_confidence_gate(value: float) -> float:
    """Clamp an overall-confidence gate to 0-1.

    Raises:
        ConfigurationError: If *value* is NaN or infinite.
    """
    if not math.isfinite(value):
        raise ConfigurationError(f"Confidence gate must be a finite number, got {value}")
    return min(max(value, 0.0), 1.0)


@dataclass
class DetectionOptions:
    """Everything a detection run needs besides the name corpus."""

    capture: CaptureConfig = field(default_factory=CaptureConfig)
    preprocess: PreprocessConfig = field(default_factory=PreprocessConfig)
    recognize: RecognizeConfig = field(default_factory=RecognizeConfig)
    save_debug_images: bool = False
    debug_image_path: Optional[Path] = None
    min_overall_confidence: float = MIN_OVERALL_CONFIDENCE

    @classmethod
    def with_regions(cls, regions: Sequence[CaptureRegion]) -> "DetectionOptions":
        """Default options with a custom layout (probes the screen size)."""
        return cls(capture=CaptureConfig.with_regions(regions))

    def with_debug_images(self, path: Path) -> "DetectionOptions":
        return replace(self, save_debug_images=True, debug_image_path=Path(path))

    def snapshot(self) -> "DetectionOptions":
        """Independent copy, safe to use outside the owner's lock."""
        return replace(self, capture=self.capture.copy())


@dataclass(frozen=True)
class DetectedCard:
    """A matched card bound to the screen region it was read from."""

    card_id: str
    card_name: str
    region: CaptureRegion
    ocr_confidence: int
    match_score: int
    overall_confidence: float
    raw_ocr_text: str

    def is_confident(self, threshold: float) -> bool:
        return self.overall_confidence >= threshold

    def to_dict(self) -> dict[str, Any]:
        return {
            "card_id": self.card_id,
            "card_name": self.card_name,
            "confidence": self.overall_confidence,
            "ocr_confidence": self.ocr_confidence,
            "match_score": self.match_score,
            "raw_text": self.raw_ocr_text,
            "region": self.region.to_dict(),
        }


@dataclass
class CardDetectionResult:
    """Outcome of one detection run.

    ``success`` is False only when the run could not happen at all; an empty
    ``detected_cards`` with ``success`` True means nothing was recognised.
    """

    detected_cards: list[DetectedCard] = field(default_factory=list)
    success: bool = True
    error_message: Optional[str] = None
    average_confidence: float = field(init=False)

    def __post_init__(self) -> None:
        if self.detected_cards:
            self.average_confidence = sum(
                c.overall_confidence for c in self.detected_cards
            ) / len(self.detected_cards)
        else:
            self.average_confidence = 0.0

    @classmethod
    def failed(cls, error: Any) -> "CardDetectionResult":
        return cls([], success=False, error_message=str(error))

    def confident_detections(self, threshold: float) -> list[DetectedCard]:
        return [c for c in self.detected_cards if c.is_confident(threshold)]

    def card_names(self) -> list[str]:
        return [c.card_name for c in self.detected_cards]

    def is_empty(self) -> bool:
        return not self.detected_cards

    def __len__(self) -> int:
        return len(self.detected_cards)

    def to_dict(self) -> dict[str, Any]:
        return {
            "detected_cards": self.card_names(),
            "confidence": self.average_confidence,
            "success": self.success,
            "error": self.error_message,
            "details": [c.to_dict() for c in self.detected_cards],
        }


class OcrPipeline:
    """Detects card names on screen using the configured regions.

    Args:
        card_names: ``(card_id, card_name)`` pairs to match against.
        options: Detection options; defaults for the reference resolution.
        text_backend: OCR backend; defaults to the process-wide one.

    Raises:
        PipelineError: If the recognizer cannot be built (empty corpus or
            OCR engine failure). Nothing has been captured at that point.
    """

    def __init__(
        self,
        card_names: Sequence[CardName],
        options: Optional[DetectionOptions] = None,
        text_backend: Optional[TextBackend] = None,
    ) -> None:
        self.options = options or DetectionOptions()
        self._card_names = list(card_names)
        try:
            self.recognition_pipeline = RecognitionPipeline(
                self._card_names, self.options.recognize, text_backend,
            )
        except RecognizeError as exc:
            raise PipelineError("recognize", exc) from exc

    def detect_cards(self) -> CardDetectionResult:
        """Capture, preprocess and recognize every configured region.

        Matches below ``min_overall_confidence`` are dropped. Each accepted
        card carries the region at its slot index (a zero-area region if the
        layout changed underneath the run).
        """
        options = self.options
        regions = options.capture.get_regions()
        detected: list[DetectedCard] = []
        debug_index = 0

        for i, outcome in enumerate(options.capture.capture_all()):
            if isinstance(outcome, CaptureError):
                logger.warning("Capture failed for region %d: %s", i, outcome)
                continue

            try:
                gray = preprocess_for_ocr(outcome, options.preprocess)
            except PreprocessError as exc:
                logger.warning("Preprocessing failed for region %d: %s", i, exc)
                continue

            if options.save_debug_images and options.debug_image_path is not None:
                debug_path = options.debug_image_path / f"debug_region_{debug_index}.png"
                try:
                    save_debug_image(gray, debug_path)
                except PreprocessError as exc:
                    logger.warning("Could not save debug image %s: %s", debug_path, exc)
                debug_index += 1

            try:
                match = self.recognition_pipeline.process(gray)
            except RecognizeError as exc:
                logger.warning("Recognition failed for region %d: %s", i, exc)
                continue

            if match is None:
                logger.debug("No card detected in region %d", i)
                continue

            if match.overall_confidence < options.min_overall_confidence:
                logger.debug(
                    "Region %d: '%s' below overall confidence (%.2f < %.2f)",
                    i, match.card_name, match.overall_confidence,
                    options.min_overall_confidence,
                )
                continue

            region = regions[i] if i < len(regions) else CaptureRegion(0, 0, 0, 0)
            detected.append(DetectedCard(
                card_id=match.card_id,
                card_name=match.card_name,
                region=region,
                ocr_confidence=match.ocr_confidence,
                match_score=match.match_score,
                overall_confidence=match.overall_confidence,
                raw_ocr_text=match.ocr_text,
            ))
            logger.info(
                "Region %d: detected '%s' (confidence=%.2f)",
                i, match.card_name, match.overall_confidence,
            )

        return CardDetectionResult(detected)

    def update_regions(self, regions: Sequence[CaptureRegion]) -> None:
        self.options.capture.update_regions(regions)

    def get_regions(self) -> tuple[CaptureRegion, ...]:
        return self.options.capture.get_regions()

    def available_card_names(self) -> list[CardName]:
        return list(self._card_names)


def quick_detect(card_names: Sequence[CardName]) -> CardDetectionResult:
    """Run one detection with default options.

    Raises:
        PipelineError: If the pipeline cannot be built.
    """
    return OcrPipeline(card_names).detect_cards()
