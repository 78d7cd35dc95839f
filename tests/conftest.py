"""Shared test configuration and fixtures.

Every test runs against the stub display backend and a scripted text
backend, so no display server or Tesseract install is needed. The
process-wide backends are reset after each test.
"""

from collections import deque
from typing import Iterator

import numpy as np
import pytest

from capture import StubDisplayBackend, set_display_backend
from recognize import RecognizeConfig, TextBackend, set_text_backend


CARD_NAMES = [
    ("banished_fel", "Fel"),
    ("banished_talos", "Talos"),
    ("banished_just_cause", "Just Cause"),
    ("banished_cleave", "Cleave"),
    ("pyreborne_lord_fenix", "Lord Fenix"),
    ("underlegion_bolete", "Bolete the Guillotine"),
]


class ScriptedTextBackend(TextBackend):
    """Returns queued ``(text, confidence)`` readings, then a default one.

    Records the shape of every image it is given.
    """

    name = "scripted"

    def __init__(self, *readings: tuple[str, int], default: tuple[str, int] = ("", 0)) -> None:
        self.readings = deque(readings)
        self.default = default
        self.shapes: list[tuple[int, ...]] = []

    def recognize(self, image: np.ndarray, config: RecognizeConfig) -> tuple[str, int]:
        self.shapes.append(image.shape)
        if self.readings:
            return self.readings.popleft()
        return self.default


@pytest.fixture(autouse=True)
def _reset_backends() -> Iterator[None]:
    yield
    set_display_backend(None)
    set_text_backend(None)


@pytest.fixture
def card_names() -> list[tuple[str, str]]:
    return list(CARD_NAMES)


@pytest.fixture
def stub_display() -> StubDisplayBackend:
    backend = StubDisplayBackend()
    set_display_backend(backend)
    return backend


@pytest.fixture
def scripted_text() -> ScriptedTextBackend:
    backend = ScriptedTextBackend()
    set_text_backend(backend)
    return backend
