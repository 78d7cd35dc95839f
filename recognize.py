"""Tesseract text recognition and fuzzy card-name matching.

Reads raw text from a preprocessed region with ``pytesseract``, then matches
it against the name corpus with ``rapidfuzz``. The OCR engine's confidence
and the match score are fused into a single 0-1 confidence. No capture or
preprocessing logic belongs here.
"""

import logging
from dataclasses import dataclass, replace
from typing import Iterable, Optional, Sequence, Union

import numpy as np
import pytesseract
from rapidfuzz import fuzz

from config import (
    BACKEND_LIVE,
    BACKEND_STUB,
    DEFAULT_BACKEND,
    MATCH_MIN_SCORE,
    MATCH_SCORE_CAP,
    MATCH_SCORE_WEIGHT,
    OCR_CONFIDENCE_WEIGHT,
    OCR_LANGUAGE,
    OCR_MIN_CONFIDENCE,
    OCR_OEM,
    OCR_PSM,
    OCR_WHITELIST,
    SHORT_TEXT_LENGTH,
)
from exceptions import (
    ConfigurationError,
    EngineError,
    EngineInitError,
    InvalidOcrImageError,
    NoCardNamesAvailableError,
    RecognizeError,
)

logger = logging.getLogger(__name__)

CardName = tuple[str, str]  # (card_id, card_name)


# ---------------------------------------------------------------------------
# Configuration and result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RecognizeConfig:
    """Tesseract settings and matching thresholds.

    Attributes:
        tesseract_cmd: Path to the ``tesseract`` binary (None = on PATH).
        language: Tesseract language code.
        psm: Page segmentation mode (7 = single text line, 8 = single word).
        oem: OCR engine mode (1 = LSTM only, 3 = default).
        min_confidence: Minimum mean OCR confidence (0-100).
        min_match_score: Minimum fuzzy match score (0-100).
        whitelist: Characters Tesseract may output (None = all).
    """

    tesseract_cmd: Optional[str] = None
    language: str = OCR_LANGUAGE
    psm: int = OCR_PSM
    oem: int = OCR_OEM
    min_confidence: int = OCR_MIN_CONFIDENCE
    min_match_score: int = MATCH_MIN_SCORE
    whitelist: Optional[str] = OCR_WHITELIST

    @classmethod
    def with_language(cls, language: str) -> "RecognizeConfig":
        return cls(language=language)

    def with_whitelist(self, whitelist: str) -> "RecognizeConfig":
        return replace(self, whitelist=whitelist)

    def tesseract_config(self) -> str:
        """Render the ``config`` string passed to pytesseract."""
        parts = [f"--oem {self.oem}", f"--psm {self.psm}"]
        if self.whitelist:
            chars = "".join(
                c for c in self.whitelist if not c.isspace() and c not in "\"'"
            )
            parts.append(f"-c tessedit_char_whitelist={chars}")
        return " ".join(parts)


@dataclass(frozen=True)
class OcrResult:
    """Text read from one image, with Tesseract's mean confidence (0-100)."""

    text: str
    confidence: int
    is_confident: bool

    @classmethod
    def create(cls, text: str, confidence: int, min_confidence: int) -> "OcrResult":
        return cls(text.strip(), confidence, confidence >= min_confidence)

    def normalized_text(self) -> str:
        return self.text.lower().strip()


def calculate_overall_confidence(ocr_confidence: int, match_score: int) -> float:
    """Fuse OCR confidence and match score (both 0-100) into 0.0-1.0.

    The match score carries more weight: short card names are identified
    more reliably by the fuzzy match than by per-character OCR confidence.
    """
    return (
        ocr_confidence * OCR_CONFIDENCE_WEIGHT + match_score * MATCH_SCORE_WEIGHT
    ) / 100.0


@dataclass(frozen=True)
class CardMatch:
    """A corpus entry matched from OCR text."""

    card_id: str
    card_name: str
    ocr_text: str
    match_score: int
    ocr_confidence: int = 0
    overall_confidence: float = 0.0

    def with_ocr_confidence(self, ocr_confidence: int) -> "CardMatch":
        """Attach the OCR confidence and compute the fused confidence."""
        return replace(
            self,
            ocr_confidence=ocr_confidence,
            overall_confidence=calculate_overall_confidence(
                ocr_confidence, self.match_score,
            ),
        )


# ---------------------------------------------------------------------------
# Text recognition backends
# ---------------------------------------------------------------------------


class TextBackend:
    """Turns a single-channel image into ``(text, mean_confidence)``."""

    name = "base"

    def recognize(self, image: np.ndarray, config: RecognizeConfig) -> tuple[str, int]:
        raise NotImplementedError


class TesseractBackend(TextBackend):
    """Live backend calling the Tesseract binary through pytesseract.

    Raises:
        EngineInitError: If the Tesseract binary cannot be found.
    """

    name = BACKEND_LIVE

    def __init__(self, tesseract_cmd: Optional[str] = None) -> None:
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        try:
            self.version = pytesseract.get_tesseract_version()
        except pytesseract.TesseractNotFoundError as exc:
            raise EngineInitError(
                "tesseract is not installed or not in PATH"
            ) from exc
        logger.info("Tesseract %s initialized", self.version)

    def recognize(self, image: np.ndarray, config: RecognizeConfig) -> tuple[str, int]:
        try:
            data = pytesseract.image_to_data(
                image,
                lang=config.language,
                config=config.tesseract_config(),
                output_type=pytesseract.Output.DICT,
            )
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as exc:
            raise EngineError(str(exc)) from exc

        lines: dict[tuple[int, int, int], list[str]] = {}
        confidences: list[float] = []
        for i, raw in enumerate(data.get("text", [])):
            word = str(raw or "").strip()
            if not word:
                continue
            key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
            lines.setdefault(key, []).append(word)
            conf = float(data["conf"][i])
            # Tesseract reports -1 for non-word boxes.
            if conf >= 0:
                confidences.append(conf)

        text = "\n".join(" ".join(words) for words in lines.values())
        confidence = round(sum(confidences) / len(confidences)) if confidences else 0
        return text, int(confidence)


class StubTextBackend(TextBackend):
    """Deterministic backend that never reads anything."""

    name = BACKEND_STUB

    def recognize(self, image: np.ndarray, config: RecognizeConfig) -> tuple[str, int]:
        return "", 0


_text_backend: Optional[TextBackend] = None


def create_text_backend(name: str, tesseract_cmd: Optional[str] = None) -> TextBackend:
    """Build a text backend by name (``"live"`` or ``"stub"``).

    Raises:
        ConfigurationError: If *name* is not a known backend.
        EngineInitError: If the live engine cannot start.
    """
    if name == BACKEND_LIVE:
        return TesseractBackend(tesseract_cmd)
    if name == BACKEND_STUB:
        return StubTextBackend()
    raise ConfigurationError(f"Unknown text backend '{name}'")


def get_text_backend(config: Optional[RecognizeConfig] = None) -> TextBackend:
    """Return the process-wide text backend, creating it on first use."""
    global _text_backend
    if _text_backend is None:
        tesseract_cmd = config.tesseract_cmd if config else None
        _text_backend = create_text_backend(DEFAULT_BACKEND, tesseract_cmd)
        logger.info("Using '%s' text backend", _text_backend.name)
    return _text_backend


def set_text_backend(backend: Optional[TextBackend]) -> None:
    """Install *backend* as the process-wide default (None resets it)."""
    global _text_backend
    _text_backend = backend


# ---------------------------------------------------------------------------
# OCR engine
# ---------------------------------------------------------------------------


class OcrEngine:
    """Runs the text backend with a fixed ``RecognizeConfig``."""

    def __init__(
        self,
        config: Optional[RecognizeConfig] = None,
        backend: Optional[TextBackend] = None,
    ) -> None:
        self.config = config or RecognizeConfig()
        self.backend = backend or get_text_backend(self.config)

    def recognize(self, img: np.ndarray) -> OcrResult:
        """Read text from a single-channel image.

        Raises:
            InvalidOcrImageError: If the image has a zero dimension.
            EngineError: If the backend fails.
        """
        if img.ndim < 2 or img.shape[0] == 0 or img.shape[1] == 0:
            raise InvalidOcrImageError()

        text, confidence = self.backend.recognize(img, self.config)
        result = OcrResult.create(text, confidence, self.config.min_confidence)
        logger.debug(
            "OCR read %r (confidence=%d, confident=%s)",
            result.text, result.confidence, result.is_confident,
        )
        return result

    def recognize_multiple(
        self,
        images: Sequence[np.ndarray],
    ) -> list[Union[OcrResult, RecognizeError]]:
        """Recognize each image; a failing image yields its error in place."""
        results: list[Union[OcrResult, RecognizeError]] = []
        for img in images:
            try:
                results.append(self.recognize(img))
            except RecognizeError as exc:
                results.append(exc)
        return results


# ---------------------------------------------------------------------------
# Name matching
# ---------------------------------------------------------------------------


def _score(candidate: str, query: str) -> int:
    return min(round(fuzz.ratio(candidate, query)), MATCH_SCORE_CAP)


class CardMatcher:
    """Fuzzy-matches OCR text against ``(card_id, card_name)`` pairs.

    Args:
        card_names: The name corpus, in a stable order. Ties between equal
            scores go to the entry that comes first.
        min_score: A candidate must score strictly above this to match.

    Raises:
        NoCardNamesAvailableError: If *card_names* is empty.
    """

    def __init__(self, card_names: Sequence[CardName], min_score: int) -> None:
        if not card_names:
            raise NoCardNamesAvailableError()
        self._card_names = list(card_names)
        self.min_score = min_score
        self._entries = [
            (card_id, card_name, card_name.lower(), card_name.lower().split())
            for card_id, card_name in self._card_names
        ]

    @property
    def card_names(self) -> list[CardName]:
        return list(self._card_names)

    def find_best_match(self, ocr_text: str) -> Optional[CardMatch]:
        """Return the best-scoring card for *ocr_text*, or None.

        Every name is scored against the whole normalized text. Text shorter
        than ``SHORT_TEXT_LENGTH`` is also scored against each word of each
        name, so a partial capture like "Guillotine" still finds "Bolete the
        Guillotine".
        """
        normalized = ocr_text.lower().strip()
        if not normalized:
            return None

        short = len(normalized) < SHORT_TEXT_LENGTH
        best: Optional[CardName] = None
        best_score = self.min_score

        for card_id, card_name, lowered, words in self._entries:
            score = _score(lowered, normalized)
            if score > best_score:
                best, best_score = (card_id, card_name), score

            if short:
                for word in words:
                    word_score = _score(word, normalized)
                    if word_score > best_score:
                        best, best_score = (card_id, card_name), word_score

        if best is None:
            return None
        return CardMatch(
            card_id=best[0],
            card_name=best[1],
            ocr_text=ocr_text,
            match_score=best_score,
        )

    def match_results(self, ocr_results: Iterable[OcrResult]) -> list[CardMatch]:
        """Best match per OCR result, sorted by overall confidence (highest first)."""
        matches = []
        for result in ocr_results:
            match = self.find_best_match(result.text)
            if match is not None:
                matches.append(match.with_ocr_confidence(result.confidence))
        matches.sort(key=lambda m: m.overall_confidence, reverse=True)
        return matches

    def find_all_matches(self, ocr_text: str, threshold: int) -> list[CardMatch]:
        """All whole-name matches scoring at least *threshold*, best first.

        Used to inspect ambiguous readings; ``overall_confidence`` is the
        match score alone.
        """
        normalized = ocr_text.lower().strip()
        if not normalized:
            return []

        matches = []
        for card_id, card_name, lowered, _words in self._entries:
            score = _score(lowered, normalized)
            if score >= threshold:
                matches.append(CardMatch(
                    card_id=card_id,
                    card_name=card_name,
                    ocr_text=ocr_text,
                    match_score=score,
                    overall_confidence=score / 100.0,
                ))
        matches.sort(key=lambda m: m.match_score, reverse=True)
        return matches


# ---------------------------------------------------------------------------
# Recognition pipeline
# ---------------------------------------------------------------------------


class RecognitionPipeline:
    """OCR followed by name matching.

    Raises:
        NoCardNamesAvailableError: If *card_names* is empty.
        EngineInitError: If the OCR backend cannot start.
    """

    def __init__(
        self,
        card_names: Sequence[CardName],
        config: Optional[RecognizeConfig] = None,
        backend: Optional[TextBackend] = None,
    ) -> None:
        self.config = config or RecognizeConfig()
        # Corpus first: an empty corpus must fail before the engine starts.
        self.card_matcher = CardMatcher(card_names, self.config.min_match_score)
        self.ocr_engine = OcrEngine(self.config, backend)

    def process(self, img: np.ndarray) -> Optional[CardMatch]:
        """Recognize and match one image.

        Returns:
            The best match with OCR and overall confidence filled in, or
            None if the OCR result is not confident or nothing matches.

        Raises:
            RecognizeError: If OCR fails on the image.
        """
        ocr_result = self.ocr_engine.recognize(img)
        if not ocr_result.is_confident:
            logger.debug(
                "Discarding low-confidence OCR %r (%d < %d)",
                ocr_result.text, ocr_result.confidence, self.config.min_confidence,
            )
            return None

        match = self.card_matcher.find_best_match(ocr_result.text)
        if match is None:
            return None
        return match.with_ocr_confidence(ocr_result.confidence)

    def process_multiple(self, images: Sequence[np.ndarray]) -> list[CardMatch]:
        """Recognize many images, drop failures and low-confidence readings."""
        confident = []
        for result in self.ocr_engine.recognize_multiple(images):
            if isinstance(result, RecognizeError):
                logger.warning("Recognition failed: %s", result)
                continue
            if result.is_confident:
                confident.append(result)
        return self.card_matcher.match_results(confident)


def normalize_card_name(name: str) -> str:
    """Strip punctuation, collapse whitespace and lowercase a card name."""
    kept = "".join(ch for ch in name if ch.isalnum() or ch.isspace())
    return " ".join(kept.split()).lower()


def build_card_map(cards: Iterable[CardName]) -> dict[str, str]:
    """Map ``card_id -> card_name``."""
    return dict(cards)
