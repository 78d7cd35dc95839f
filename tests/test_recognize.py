"""Tests for recognize.py: OCR engine, name matching and confidence fusion."""

import shlex
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
import pytesseract

from config import OCR_WHITELIST
from conftest import ScriptedTextBackend
from exceptions import (
    ConfigurationError,
    EngineError,
    EngineInitError,
    InvalidOcrImageError,
    NoCardNamesAvailableError,
)
from recognize import (
    CardMatch,
    CardMatcher,
    OcrEngine,
    OcrResult,
    RecognitionPipeline,
    RecognizeConfig,
    StubTextBackend,
    TesseractBackend,
    build_card_map,
    calculate_overall_confidence,
    create_text_backend,
    normalize_card_name,
)


def _image() -> np.ndarray:
    return np.full((120, 600), 255, dtype=np.uint8)


# ---------------------------------------------------------------------------
# Confidence fusion
# ---------------------------------------------------------------------------

class TestConfidenceFusion:
    """Tests for calculate_overall_confidence() and CardMatch."""

    def test_weights(self) -> None:
        """OCR confidence weighs 0.4, match score 0.6."""
        assert calculate_overall_confidence(80, 60) == pytest.approx(0.68)

    def test_perfect(self) -> None:
        """Perfect inputs give 1.0."""
        assert calculate_overall_confidence(100, 100) == pytest.approx(1.0)

    def test_zero(self) -> None:
        """Zero inputs give 0.0."""
        assert calculate_overall_confidence(0, 0) == 0.0

    def test_with_ocr_confidence(self) -> None:
        """Attaching OCR confidence fills in the fused value."""
        match = CardMatch("banished_fel", "Fel", "Fell", 86)

        filled = match.with_ocr_confidence(85)

        assert filled.ocr_confidence == 85
        assert filled.overall_confidence == pytest.approx(0.856)
        assert match.overall_confidence == 0.0


# ---------------------------------------------------------------------------
# CardMatcher
# ---------------------------------------------------------------------------

class TestCardMatcher:
    """Tests for CardMatcher.find_best_match() and friends."""

    def test_empty_corpus(self) -> None:
        """An empty corpus cannot be matched against."""
        with pytest.raises(NoCardNamesAvailableError, match="No card names available"):
            CardMatcher([], 60)

    def test_misread_matches_closest_name(self, card_names) -> None:
        """'Fell' matches 'Fel' with a score above 60."""
        match = CardMatcher(card_names, 60).find_best_match("Fell")

        assert match is not None
        assert match.card_id == "banished_fel"
        assert match.card_name == "Fel"
        assert match.ocr_text == "Fell"
        assert match.match_score == 86

    def test_exact_match_scores_100(self, card_names) -> None:
        """Case and surrounding whitespace are ignored."""
        match = CardMatcher(card_names, 60).find_best_match("  LORD FENIX ")

        assert match is not None
        assert match.card_id == "pyreborne_lord_fenix"
        assert match.match_score == 100

    @pytest.mark.parametrize("text", ["", "   "])
    def test_empty_text(self, card_names, text: str) -> None:
        """Blank OCR text never matches."""
        assert CardMatcher(card_names, 60).find_best_match(text) is None

    def test_no_match(self, card_names) -> None:
        """Unrelated text matches nothing."""
        assert CardMatcher(card_names, 60).find_best_match("zzzz") is None

    def test_threshold_is_strict(self, card_names) -> None:
        """A score equal to min_score is not a match."""
        assert CardMatcher(card_names, 86).find_best_match("Fell") is None
        assert CardMatcher(card_names, 85).find_best_match("Fell") is not None

    def test_short_text_matches_single_word(self, card_names) -> None:
        """A short partial read matches one word of a longer name."""
        match = CardMatcher(card_names, 60).find_best_match("Guilotine")

        assert match is not None
        assert match.card_id == "underlegion_bolete"
        assert match.match_score == 95

    def test_tie_goes_to_first_entry(self) -> None:
        """Equal scores keep the earliest corpus entry."""
        matcher = CardMatcher([("a", "Cleave"), ("b", "Cleave")], 60)

        match = matcher.find_best_match("Cleave")

        assert match is not None
        assert match.card_id == "a"

    def test_match_results_sorted_by_overall_confidence(self, card_names) -> None:
        """Results are ordered by fused confidence, highest first."""
        matcher = CardMatcher(card_names, 60)
        results = [
            OcrResult.create("Fel", 70, 60),
            OcrResult.create("Cleave", 95, 60),
            OcrResult.create("qqqq", 99, 60),
        ]

        matches = matcher.match_results(results)

        assert [m.card_name for m in matches] == ["Cleave", "Fel"]
        assert matches[0].overall_confidence > matches[1].overall_confidence

    def test_find_all_matches(self, card_names) -> None:
        """All whole-name matches at or above the threshold, best first."""
        matcher = CardMatcher(card_names, 60)

        matches = matcher.find_all_matches("Fel", 50)

        assert [m.card_name for m in matches] == ["Fel"]
        assert matches[0].overall_confidence == pytest.approx(1.0)
        assert matcher.find_all_matches("", 0) == []


# ---------------------------------------------------------------------------
# OcrEngine and backends
# ---------------------------------------------------------------------------

class TestOcrEngine:
    """Tests for OcrEngine with a scripted backend."""

    def test_strips_text_and_flags_confidence(self) -> None:
        """Text is trimmed; confidence is compared to min_confidence."""
        engine = OcrEngine(backend=ScriptedTextBackend((" Fel \n", 75), ("Fel", 59)))

        first = engine.recognize(_image())
        second = engine.recognize(_image())

        assert first == OcrResult("Fel", 75, True)
        assert second.is_confident is False

    def test_zero_sized_image(self) -> None:
        """Zero-sized images are rejected before reaching the backend."""
        backend = ScriptedTextBackend()
        engine = OcrEngine(backend=backend)

        with pytest.raises(InvalidOcrImageError, match="Invalid image for OCR"):
            engine.recognize(np.zeros((0, 5), dtype=np.uint8))
        assert backend.shapes == []

    def test_recognize_multiple_keeps_errors_in_place(self) -> None:
        """A bad image yields its error; the rest are still read."""
        engine = OcrEngine(backend=ScriptedTextBackend(("Fel", 90), ("Talos", 80)))

        results = engine.recognize_multiple(
            [_image(), np.zeros((0, 0), dtype=np.uint8), _image()],
        )

        assert results[0].text == "Fel"
        assert isinstance(results[1], InvalidOcrImageError)
        assert results[2].text == "Talos"

    def test_normalized_text(self) -> None:
        """normalized_text() lowercases."""
        assert OcrResult.create("Just Cause", 90, 60).normalized_text() == "just cause"


class TestTesseractBackend:
    """Tests for TesseractBackend with pytesseract mocked out."""

    @patch("recognize.pytesseract.image_to_data")
    @patch("recognize.pytesseract.get_tesseract_version", return_value="5.3.0")
    def test_joins_words_and_averages_confidence(
        self, _mock_version: MagicMock, mock_data: MagicMock,
    ) -> None:
        """Words on a line are joined; -1 confidences are ignored."""
        mock_data.return_value = {
            "text": ["", "Lord", "Fenix"],
            "conf": [-1, 90, 80],
            "block_num": [1, 1, 1],
            "par_num": [1, 1, 1],
            "line_num": [0, 1, 1],
        }

        text, confidence = TesseractBackend().recognize(_image(), RecognizeConfig())

        assert text == "Lord Fenix"
        assert confidence == 85

    @patch("recognize.pytesseract.image_to_data")
    @patch("recognize.pytesseract.get_tesseract_version", return_value="5.3.0")
    def test_passes_config(
        self, _mock_version: MagicMock, mock_data: MagicMock,
    ) -> None:
        """Language and the rendered config string reach pytesseract."""
        mock_data.return_value = {
            "text": [], "conf": [], "block_num": [], "par_num": [], "line_num": [],
        }
        config = RecognizeConfig(language="deu").with_whitelist("ABC")

        text, confidence = TesseractBackend().recognize(_image(), config)

        assert (text, confidence) == ("", 0)
        kwargs = mock_data.call_args.kwargs
        assert kwargs["lang"] == "deu"
        assert kwargs["config"] == "--oem 3 --psm 7 -c tessedit_char_whitelist=ABC"

    @patch(
        "recognize.pytesseract.get_tesseract_version",
        side_effect=pytesseract.TesseractNotFoundError(),
    )
    def test_missing_binary(self, _mock_version: MagicMock) -> None:
        """A missing tesseract binary fails initialization."""
        with pytest.raises(EngineInitError, match="OCR engine initialization failed"):
            TesseractBackend()

    @patch("recognize.pytesseract.image_to_data")
    @patch("recognize.pytesseract.get_tesseract_version", return_value="5.3.0")
    def test_tesseract_error(
        self, _mock_version: MagicMock, mock_data: MagicMock,
    ) -> None:
        """Tesseract failures become EngineError."""
        mock_data.side_effect = pytesseract.TesseractError(1, "bad image")

        with pytest.raises(EngineError, match="OCR engine error"):
            TesseractBackend().recognize(_image(), RecognizeConfig())


class TestBackendSelection:
    """Tests for create_text_backend()."""

    def test_stub(self) -> None:
        """The stub backend reads nothing."""
        backend = create_text_backend("stub")

        assert isinstance(backend, StubTextBackend)
        assert backend.recognize(_image(), RecognizeConfig()) == ("", 0)

    def test_unknown(self) -> None:
        """Unknown backend names are configuration errors."""
        with pytest.raises(ConfigurationError, match="Unknown text backend"):
            create_text_backend("cloud")

    def test_config_without_whitelist(self) -> None:
        """No whitelist means no -c option."""
        config = RecognizeConfig(whitelist=None, psm=8, oem=1)

        assert config.tesseract_config() == "--oem 1 --psm 8"

    @pytest.mark.parametrize("posix", [True, False])
    def test_default_config_splits_cleanly(self, posix: bool) -> None:
        """The default whitelist is one -c argument on every platform."""
        args = shlex.split(RecognizeConfig().tesseract_config(), posix=posix)

        assert args == [
            "--oem", "3", "--psm", "7",
            "-c", f"tessedit_char_whitelist={OCR_WHITELIST}",
        ]

    def test_whitelist_drops_spaces_and_quotes(self) -> None:
        """Characters that would split or quote the argument are left out."""
        config = RecognizeConfig(whitelist="Ab 'c\"-")

        assert config.tesseract_config().endswith("-c tessedit_char_whitelist=Abc-")

    def test_with_language(self) -> None:
        """with_language() keeps the other defaults."""
        config = RecognizeConfig.with_language("fra")

        assert config.language == "fra"
        assert config.psm == RecognizeConfig().psm


# ---------------------------------------------------------------------------
# RecognitionPipeline
# ---------------------------------------------------------------------------

class TestRecognitionPipeline:
    """Tests for RecognitionPipeline."""

    def test_empty_corpus_fails_before_engine(self) -> None:
        """The corpus is checked before any OCR backend is created."""
        with patch("recognize.get_text_backend") as mock_get:
            with pytest.raises(NoCardNamesAvailableError):
                RecognitionPipeline([])
        mock_get.assert_not_called()

    def test_process_fills_confidences(self, card_names) -> None:
        """A confident read yields a match with both confidences set."""
        pipeline = RecognitionPipeline(
            card_names, backend=ScriptedTextBackend(("Fell", 85)),
        )

        match = pipeline.process(_image())

        assert match is not None
        assert match.card_id == "banished_fel"
        assert match.ocr_confidence == 85
        assert match.match_score == 86
        assert match.overall_confidence == pytest.approx(0.856)

    def test_process_low_ocr_confidence(self, card_names) -> None:
        """Reads below the OCR confidence floor are discarded."""
        pipeline = RecognitionPipeline(
            card_names, backend=ScriptedTextBackend(("Fel", 40)),
        )

        assert pipeline.process(_image()) is None

    def test_process_no_match(self, card_names) -> None:
        """Confident text that matches nothing gives None."""
        pipeline = RecognitionPipeline(
            card_names, backend=ScriptedTextBackend(("zzzz", 99)),
        )

        assert pipeline.process(_image()) is None

    def test_process_multiple(self, card_names) -> None:
        """Low-confidence reads are dropped; results are sorted."""
        pipeline = RecognitionPipeline(
            card_names,
            backend=ScriptedTextBackend(("Fel", 90), ("Talos", 30), ("Cleave", 95)),
        )

        matches = pipeline.process_multiple([_image(), _image(), _image()])

        assert [m.card_name for m in matches] == ["Cleave", "Fel"]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    """Tests for normalize_card_name() and build_card_map()."""

    def test_normalize_card_name(self) -> None:
        """Punctuation is dropped and whitespace collapsed."""
        assert normalize_card_name("  Bolete, the  Guillotine! ") == (
            "bolete the guillotine"
        )

    def test_build_card_map(self, card_names) -> None:
        """Maps every id to its name."""
        card_map = build_card_map(card_names)

        assert card_map["banished_talos"] == "Talos"
        assert len(card_map) == len(card_names)
