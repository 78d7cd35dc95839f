"""OpenCV image preprocessing ahead of OCR.

Turns a captured BGRA region into a clean single-channel image for
Tesseract. The stages always run in the same order:

1. grayscale conversion
2. contrast stretch around mid-gray (if ``contrast_factor != 1.0``)
3. Lanczos upscale (if ``scale_factor > 1.0``)
4. denoise: mild Gaussian blur, then a 3x3 median filter (if enabled)
5. adaptive or fixed binary threshold
6. inversion, for light text on a dark background (if enabled)

Every function here is pure: inputs are never modified in place.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np

from config import (
    DENOISE_BLUR_SIGMA,
    DENOISE_MEDIAN_KERNEL,
    PREPROCESS_ADAPTIVE,
    PREPROCESS_ADAPTIVE_C,
    PREPROCESS_BLOCK_SIZE,
    PREPROCESS_CONTRAST_FACTOR,
    PREPROCESS_DENOISE,
    PREPROCESS_INVERT,
    PREPROCESS_SCALE_FACTOR,
    PREPROCESS_THRESHOLD,
)
from exceptions import EmptyImageError, InvalidImageError, ProcessingFailedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreprocessConfig:
    """Parameters for ``preprocess_for_ocr``.

    Attributes:
        threshold: Cut-off for fixed thresholding (0-255).
        use_adaptive_threshold: Use the neighbourhood-mean threshold instead
            of the fixed one.
        adaptive_block_size: Neighbourhood size; must be odd and positive.
        adaptive_c: Constant subtracted from the neighbourhood mean.
        denoise: Apply blur + median filter before thresholding.
        invert: Invert the binarized image.
        scale_factor: Upscale factor (1.0 = no scaling).
        contrast_factor: Contrast stretch factor (1.0 = unchanged).
    """

    threshold: int = PREPROCESS_THRESHOLD
    use_adaptive_threshold: bool = PREPROCESS_ADAPTIVE
    adaptive_block_size: int = PREPROCESS_BLOCK_SIZE
    adaptive_c: int = PREPROCESS_ADAPTIVE_C
    denoise: bool = PREPROCESS_DENOISE
    invert: bool = PREPROCESS_INVERT
    scale_factor: float = PREPROCESS_SCALE_FACTOR
    contrast_factor: float = PREPROCESS_CONTRAST_FACTOR


# ---------------------------------------------------------------------------
# Individual transforms
# ---------------------------------------------------------------------------


def to_grayscale(img: np.ndarray) -> np.ndarray:
    """Reduce a BGRA, BGR or single-channel image to one luminance channel."""
    if img.ndim == 2:
        return img.copy()
    channels = img.shape[2]
    if channels == 4:
        return cv2.cvtColor(img, cv2.COLOR_BGRA2GRAY)
    if channels == 3:
        return cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
    return img[:, :, 0].copy()


def enhance_contrast(img: np.ndarray, factor: float) -> np.ndarray:
    """Linear stretch around 128: ``clamp((v - 128) * factor + 128, 0, 255)``."""
    stretched = (img.astype(np.float32) - 128.0) * factor + 128.0
    return np.clip(stretched, 0.0, 255.0).astype(np.uint8)


def upscale(img: np.ndarray, factor: float) -> np.ndarray:
    """Resize by *factor* with Lanczos resampling.

    Factors of 1.0 or below return an unchanged copy; this never
    downscales.
    """
    if factor <= 1.0:
        return img.copy()
    height, width = img.shape[:2]
    new_size = (int(width * factor), int(height * factor))
    return cv2.resize(img, new_size, interpolation=cv2.INTER_LANCZOS4)


def apply_gaussian_blur(img: np.ndarray, sigma: float) -> np.ndarray:
    return cv2.GaussianBlur(img, (0, 0), sigmaX=sigma, sigmaY=sigma)


def apply_median_filter(img: np.ndarray, kernel_size: int) -> np.ndarray:
    """Median filter that only looks at in-bounds neighbours.

    Edge pixels take the median of the fewer values that fall inside the
    image (the upper median when that count is even). Kernel sizes below 3
    or even sizes return an unchanged copy.
    """
    if kernel_size < 3 or kernel_size % 2 == 0:
        return img.copy()

    half = kernel_size // 2
    height, width = img.shape
    padded = np.full(
        (height + 2 * half, width + 2 * half), np.nan, dtype=np.float32,
    )
    padded[half:half + height, half:half + width] = img

    windows = np.lib.stride_tricks.sliding_window_view(
        padded, (kernel_size, kernel_size),
    ).reshape(height, width, -1)
    # NaN (out of bounds) sorts last.
    ordered = np.sort(windows, axis=-1)
    counts = np.count_nonzero(~np.isnan(windows), axis=-1)
    median = np.take_along_axis(ordered, (counts // 2)[..., None], axis=-1)
    return median[..., 0].astype(np.uint8)


def apply_threshold(img: np.ndarray, threshold: int) -> np.ndarray:
    """Fixed binarization: 255 where ``v > threshold``, else 0."""
    _, binary = cv2.threshold(img, threshold, 255, cv2.THRESH_BINARY)
    return binary


def apply_adaptive_threshold(
    img: np.ndarray,
    block_size: int,
    c: int,
) -> np.ndarray:
    """Binarize against the local mean to cope with uneven backgrounds.

    For each pixel the integer mean of the in-bounds
    ``block_size x block_size`` neighbourhood is computed, and the pixel
    becomes 255 if ``v > mean - c``, else 0. An even or non-positive
    *block_size* returns an unchanged copy.
    """
    if block_size <= 0 or block_size % 2 == 0:
        return img.copy()

    src = img.astype(np.float64)
    ksize = (block_size, block_size)
    sums = cv2.boxFilter(
        src, -1, ksize, normalize=False, borderType=cv2.BORDER_CONSTANT,
    )
    counts = cv2.boxFilter(
        np.ones_like(src), -1, ksize, normalize=False,
        borderType=cv2.BORDER_CONSTANT,
    )
    mean = np.floor_divide(sums, counts)
    return np.where(src > mean - c, 255, 0).astype(np.uint8)


def invert(img: np.ndarray) -> np.ndarray:
    return cv2.bitwise_not(img)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


def _validate(img: np.ndarray) -> None:
    if not isinstance(img, np.ndarray):
        raise InvalidImageError(f"expected numpy array, got {type(img).__name__}")
    if img.ndim not in (2, 3):
        raise InvalidImageError(f"expected 2 or 3 dimensions, got {img.ndim}")
    if img.shape[0] == 0 or img.shape[1] == 0:
        raise EmptyImageError()
    if img.ndim == 3 and img.shape[2] not in (1, 3, 4):
        raise InvalidImageError(f"unsupported channel count {img.shape[2]}")
    if img.dtype != np.uint8:
        raise InvalidImageError(f"expected uint8 pixels, got {img.dtype}")


def preprocess_for_ocr(img: np.ndarray, config: PreprocessConfig) -> np.ndarray:
    """Run the full preprocessing pipeline on a captured region.

    Args:
        img: BGRA (as captured), BGR or grayscale ``uint8`` image.
        config: Preprocessing parameters.

    Returns:
        A single-channel binarized ``uint8`` image. Its size reflects any
        upscaling.

    Raises:
        EmptyImageError: If either image dimension is zero.
        InvalidImageError: If *img* is not a supported image array.
    """
    _validate(img)

    processed = to_grayscale(img)

    if config.contrast_factor != 1.0:
        processed = enhance_contrast(processed, config.contrast_factor)

    if config.scale_factor > 1.0:
        processed = upscale(processed, config.scale_factor)

    if config.denoise:
        processed = apply_gaussian_blur(processed, DENOISE_BLUR_SIGMA)
        processed = apply_median_filter(processed, DENOISE_MEDIAN_KERNEL)

    if config.use_adaptive_threshold:
        processed = apply_adaptive_threshold(
            processed, config.adaptive_block_size, config.adaptive_c,
        )
    else:
        processed = apply_threshold(processed, config.threshold)

    if config.invert:
        processed = invert(processed)

    logger.debug(
        "Preprocessed %dx%d -> %dx%d",
        img.shape[1], img.shape[0], processed.shape[1], processed.shape[0],
    )
    return processed


def preprocess_default(img: np.ndarray) -> np.ndarray:
    return preprocess_for_ocr(img, PreprocessConfig())


def save_debug_image(img: np.ndarray, path: Path) -> None:
    """Write *img* as a PNG, creating parent directories.

    Raises:
        ProcessingFailedError: If OpenCV cannot write the file.
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        written = cv2.imwrite(str(path), img)
    except (OSError, cv2.error) as exc:
        raise ProcessingFailedError(str(exc)) from exc
    if not written:
        raise ProcessingFailedError(f"could not write image to {path}")
    logger.debug("Debug image saved: %s", path)
