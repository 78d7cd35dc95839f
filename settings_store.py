"""JSON persistence of user-tunable detection options.

Stores the capture regions, the overall-confidence gate, the debug-image
flag, and the preprocessing/recognition parameters between sessions. Screen
dimensions are not stored: they are re-read from the display on load.
"""

import json
import logging
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Mapping, Optional, Union, get_args, get_origin

from capture import (
    CaptureConfig,
    CaptureRegion,
    DisplayBackend,
    get_default_card_regions,
    get_primary_screen_dimensions,
)
from config import MIN_OVERALL_CONFIDENCE
from exceptions import CaptureError, ConfigurationError
from pipeline import DetectionOptions, clamp_confidence_gate
from preprocess import PreprocessConfig
from recognize import RecognizeConfig

logger = logging.getLogger(__name__)

SETTINGS_VERSION = 1


def _check_field(cls: type, name: str, expected: Any, value: Any) -> Any:
    if get_origin(expected) is Union:
        members = [t for t in get_args(expected) if t is not type(None)]
        if value is None:
            return value
        expected = members[0]
    # Integers are accepted for floats; bools are not numbers.
    if expected is float and isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, expected) and not (expected is int and isinstance(value, bool)):
        return value
    raise ConfigurationError(
        f"{cls.__name__} setting '{name}' must be {expected.__name__}, "
        f"got {type(value).__name__}"
    )


def _config_from_dict(cls: type, data: Mapping[str, Any]) -> Any:
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"{cls.__name__} settings must be a JSON object")
    types = {f.name: f.type for f in fields(cls)}
    unknown = set(data) - set(types)
    if unknown:
        raise ConfigurationError(
            f"Unknown {cls.__name__} setting(s): {', '.join(sorted(unknown))}"
        )
    return cls(**{
        name: _check_field(cls, name, types[name], value)
        for name, value in data.items()
    })


def _screen_config(
    regions: Optional[list[CaptureRegion]],
    backend: Optional[DisplayBackend],
) -> CaptureConfig:
    try:
        width, height = get_primary_screen_dimensions(backend)
    except CaptureError as exc:
        logger.warning("Screen size unavailable, using reference layout: %s", exc)
        return CaptureConfig(regions, backend=backend)
    if regions is None:
        regions = get_default_card_regions(width, height)
    return CaptureConfig(regions, width, height, backend)


def options_to_dict(options: DetectionOptions) -> dict[str, Any]:
    return {
        "version": SETTINGS_VERSION,
        "regions": [r.to_dict() for r in options.capture.get_regions()],
        "min_overall_confidence": options.min_overall_confidence,
        "save_debug_images": options.save_debug_images,
        "debug_image_path": (
            str(options.debug_image_path) if options.debug_image_path else None
        ),
        "preprocess": asdict(options.preprocess),
        "recognize": asdict(options.recognize),
    }


def options_from_dict(
    data: Mapping[str, Any],
    backend: Optional[DisplayBackend] = None,
) -> DetectionOptions:
    """Build ``DetectionOptions`` from a settings mapping.

    Missing keys fall back to defaults; regions fall back to the default
    layout for the current screen.

    Raises:
        ConfigurationError: If a value has the wrong shape.
    """
    try:
        raw_regions = data.get("regions")
        regions = (
            [CaptureRegion.from_dict(r) for r in raw_regions]
            if raw_regions is not None else None
        )
        preprocess = _config_from_dict(PreprocessConfig, data.get("preprocess", {}))
        recognize = _config_from_dict(RecognizeConfig, data.get("recognize", {}))
        min_confidence = float(
            data.get("min_overall_confidence", MIN_OVERALL_CONFIDENCE)
        )
        debug_path = data.get("debug_image_path")
        return DetectionOptions(
            capture=_screen_config(regions, backend),
            preprocess=preprocess,
            recognize=recognize,
            save_debug_images=bool(data.get("save_debug_images", False)),
            debug_image_path=Path(debug_path) if debug_path else None,
            min_overall_confidence=clamp_confidence_gate(min_confidence),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid settings: {exc}") from exc


def load_options(
    path: Union[str, Path],
    backend: Optional[DisplayBackend] = None,
) -> DetectionOptions:
    """Load options from *path*, or defaults if the file does not exist.

    Raises:
        ConfigurationError: If the file exists but is malformed.
    """
    path = Path(path)
    if not path.exists():
        logger.info("No settings at %s, using defaults", path)
        return options_from_dict({}, backend)

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Settings file {path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings file {path} must hold a JSON object")

    logger.debug("Loaded settings from %s", path)
    return options_from_dict(data, backend)


def save_options(options: DetectionOptions, path: Union[str, Path]) -> Path:
    """Write *options* to *path* as JSON, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(options_to_dict(options), indent=2) + "\n", encoding="utf-8",
    )
    logger.info("Settings saved to %s", path)
    return path
