"""Central configuration for the draft card reader.

This module is the single source of truth for all magic values: reference
resolution, default regions, preprocessing and recognition parameters,
confidence thresholds, and paths. Never hardcode these values elsewhere.

Values the user tunes at runtime (regions, thresholds, the debug flag) are
persisted by ``settings_store.py``; the constants here are only defaults.
"""

import os
from pathlib import Path
from typing import Final

# ---------------------------------------------------------------------------
# Project paths
# ---------------------------------------------------------------------------

PROJECT_ROOT: Final[Path] = Path(__file__).resolve().parent
DEBUG_DIR: Final[Path] = PROJECT_ROOT / "debug"

# Settings file written by ``settings_store.save_options``.
SETTINGS_PATH: Final[Path] = Path(
    os.environ.get(
        "DRAFT_READER_SETTINGS",
        str(Path.home() / ".draft-card-reader" / "settings.json"),
    )
)

# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

BACKEND_LIVE: Final[str] = "live"
BACKEND_STUB: Final[str] = "stub"
BACKEND_CHOICES: Final[tuple[str, ...]] = (BACKEND_LIVE, BACKEND_STUB)

# "live" uses mss + Tesseract, "stub" returns blank captures and empty text.
DEFAULT_BACKEND: Final[str] = os.environ.get("DRAFT_READER_BACKEND", BACKEND_LIVE)

# Screen reported by the stub display backend.
STUB_SCREEN_WIDTH: Final[int] = 1920
STUB_SCREEN_HEIGHT: Final[int] = 1080

# ---------------------------------------------------------------------------
# Card name regions
# ---------------------------------------------------------------------------

# Resolution the base layout below was measured at.
REFERENCE_WIDTH: Final[int] = 1920
REFERENCE_HEIGHT: Final[int] = 1080

# (x, y, width, height) of each card name on the draft screen at 1920x1080.
# Order is the detection slot order.
BASE_CARD_REGIONS: Final[tuple[tuple[int, int, int, int], ...]] = (
    (350, 200, 300, 60),   # left card
    (810, 200, 300, 60),   # center card
    (1270, 200, 300, 60),  # right card
    (810, 500, 300, 60),   # fourth card (some draft modes only)
)

# ---------------------------------------------------------------------------
# Preprocessing
# ---------------------------------------------------------------------------

PREPROCESS_THRESHOLD: Final[int] = 127
PREPROCESS_ADAPTIVE: Final[bool] = True

# Neighbourhood size for adaptive thresholding; must be odd.
PREPROCESS_BLOCK_SIZE: Final[int] = 11
PREPROCESS_ADAPTIVE_C: Final[int] = 2

PREPROCESS_DENOISE: Final[bool] = True
PREPROCESS_INVERT: Final[bool] = False

# Upscaling small card names before thresholding helps Tesseract.
PREPROCESS_SCALE_FACTOR: Final[float] = 2.0
PREPROCESS_CONTRAST_FACTOR: Final[float] = 1.5

DENOISE_BLUR_SIGMA: Final[float] = 0.5
DENOISE_MEDIAN_KERNEL: Final[int] = 3

# ---------------------------------------------------------------------------
# OCR (Tesseract)
# ---------------------------------------------------------------------------

OCR_LANGUAGE: Final[str] = "eng"

# 7 = treat the image as a single text line.
OCR_PSM: Final[int] = 7

# 3 = default, based on what is available.
OCR_OEM: Final[int] = 3

# Tesseract splits words itself, so no space. Quotes are never passed
# through: pytesseract splits the config non-POSIX on Windows.
OCR_WHITELIST: Final[str] = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-"
)

# Minimum Tesseract mean confidence (0-100) to accept a reading.
OCR_MIN_CONFIDENCE: Final[int] = 60

# ---------------------------------------------------------------------------
# Fuzzy name matching
# ---------------------------------------------------------------------------

# A candidate must score strictly above this (0-100).
MATCH_MIN_SCORE: Final[int] = 60

# OCR text shorter than this is also matched against single name words.
SHORT_TEXT_LENGTH: Final[int] = 10

MATCH_SCORE_CAP: Final[int] = 100

# ---------------------------------------------------------------------------
# Confidence fusion
# ---------------------------------------------------------------------------

OCR_CONFIDENCE_WEIGHT: Final[float] = 0.4
MATCH_SCORE_WEIGHT: Final[float] = 0.6

# Final acceptance gate applied after fusion (0.0-1.0).
MIN_OVERALL_CONFIDENCE: Final[float] = 0.6

# ---------------------------------------------------------------------------
# Name corpus
# ---------------------------------------------------------------------------

CORPUS_TABLE: Final[str] = "cards"

# Default corpus: a SQLite card database (.db/.sqlite) or a JSON name list.
CORPUS_PATH: Final[Path] = Path(
    os.environ.get(
        "DRAFT_READER_CORPUS",
        str(Path.home() / ".draft-card-reader" / "cards.db"),
    )
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_FORMAT: Final[str] = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
