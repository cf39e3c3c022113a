from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional, Tuple

import cv2
import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)

# Saliency is computed on a reduced copy; offsets are scaled back afterwards.
ANALYSIS_MAX_SIDE = 256

EDGE_WEIGHT = 1.0
SATURATION_WEIGHT = 0.6
SKIN_WEIGHT = 1.4

# Skin-tone chroma window in YCbCr (Chai & Ngan).
SKIN_CB_RANGE = (77.0, 127.0)
SKIN_CR_RANGE = (133.0, 173.0)

FACE_CASCADE = "haarcascade_frontalface_default.xml"
# Faces are searched on a grayscale copy no larger than this.
FACE_ANALYSIS_MAX_SIDE = 640
FACE_MIN_SIZE = (30, 30)

FaceBox = Tuple[int, int, int, int]


@lru_cache(maxsize=1)
def _face_classifier() -> "cv2.CascadeClassifier":
    classifier = cv2.CascadeClassifier(cv2.data.haarcascades + FACE_CASCADE)
    if classifier.empty():
        raise RuntimeError(f"Could not load face cascade {FACE_CASCADE}")
    return classifier


def detect_face(image: Image.Image) -> Optional[FaceBox]:
    """Largest frontal face as ``(x, y, w, h)`` in ``image`` coordinates, or ``None``."""
    width, height = image.size
    scale = min(1.0, FACE_ANALYSIS_MAX_SIDE / float(max(width, height)))
    gray = image.convert("L")
    if scale < 1.0:
        gray = gray.resize(
            (max(1, int(round(width * scale))), max(1, int(round(height * scale)))),
            Image.BILINEAR,
        )
    faces = _face_classifier().detectMultiScale(
        np.asarray(gray, dtype=np.uint8), scaleFactor=1.1, minNeighbors=5, minSize=FACE_MIN_SIZE
    )
    if len(faces) == 0:
        return None
    x, y, w, h = max(faces, key=lambda r: r[2] * r[3])
    return tuple(int(round(v / scale)) for v in (x, y, w, h))


def face_offset(face: FaceBox, size: Tuple[int, int], crop_width: int, crop_height: int) -> Tuple[int, int]:
    """Window centred on ``face``, clamped inside ``size``."""
    x, y, w, h = face
    width, height = size
    left = int(round(x + w / 2.0 - crop_width / 2.0))
    top = int(round(y + h / 2.0 - crop_height / 2.0))
    return (
        min(max(0, left), max(0, width - crop_width)),
        min(max(0, top), max(0, height - crop_height)),
    )


def _normalize(values: np.ndarray) -> np.ndarray:
    peak = float(values.max()) if values.size else 0.0
    if peak <= 0.0:
        return np.zeros_like(values)
    return values / peak


def saliency_map(image: Image.Image) -> np.ndarray:
    """Per-pixel interest score: luminance edges, colour saturation and skin tone."""
    rgb = image.convert("RGB")
    arr = np.asarray(rgb, dtype=np.float32) / 255.0
    luma = arr @ np.array([0.299, 0.587, 0.114], dtype=np.float32)

    edges = np.zeros_like(luma)
    edges[:, 1:] += np.abs(np.diff(luma, axis=1))
    edges[1:, :] += np.abs(np.diff(luma, axis=0))

    saturation = arr.max(axis=2) - arr.min(axis=2)

    ycbcr = np.asarray(rgb.convert("YCbCr"), dtype=np.float32)
    cb, cr = ycbcr[..., 1], ycbcr[..., 2]
    skin = (
        (cb >= SKIN_CB_RANGE[0])
        & (cb <= SKIN_CB_RANGE[1])
        & (cr >= SKIN_CR_RANGE[0])
        & (cr <= SKIN_CR_RANGE[1])
    ).astype(np.float32)

    return (
        EDGE_WEIGHT * _normalize(edges)
        + SATURATION_WEIGHT * _normalize(saturation)
        + SKIN_WEIGHT * skin
    )


def best_window_offset(profile: np.ndarray, window: int) -> int:
    """Start index of the ``window``-long run with the largest sum.

    Ties go to the candidate closest to the centre, so a featureless
    profile behaves like a centre crop.
    """
    length = int(profile.shape[0])
    if window >= length:
        return 0
    cumulative = np.concatenate(([0.0], np.cumsum(profile, dtype=np.float64)))
    sums = cumulative[window:] - cumulative[:-window]
    best = float(sums.max())
    tolerance = 1e-9 * max(abs(best), 1.0)
    candidates = np.flatnonzero(sums >= best - tolerance)
    centre = (length - window) / 2.0
    return int(candidates[np.argmin(np.abs(candidates - centre))])


def attention_offset(image: Image.Image, crop_width: int, crop_height: int) -> Tuple[int, int]:
    """Top-left corner of the ``crop_width`` x ``crop_height`` window to keep.

    The largest detected face is centred in the window. Without a face the
    window with the most salient content wins, and a featureless image gets
    a centre crop.
    """
    width, height = image.size
    if width <= crop_width and height <= crop_height:
        return 0, 0

    face = detect_face(image)
    if face is not None:
        left, top = face_offset(face, image.size, crop_width, crop_height)
        logger.debug("Face %s: window at (%d, %d) within %dx%d", face, left, top, width, height)
        return left, top

    scale = min(1.0, ANALYSIS_MAX_SIDE / float(max(width, height)))
    if scale < 1.0:
        small = image.resize(
            (max(1, int(round(width * scale))), max(1, int(round(height * scale)))),
            Image.BILINEAR,
        )
    else:
        small = image
    scores = saliency_map(small)
    if float(scores.max()) <= 0.0:
        return centre_offset(image, crop_width, crop_height)

    left = top = 0
    if width > crop_width:
        window = min(small.width, max(1, int(round(crop_width * scale))))
        offset = best_window_offset(scores.sum(axis=0), window)
        left = min(width - crop_width, int(round(offset / scale)))
    if height > crop_height:
        window = min(small.height, max(1, int(round(crop_height * scale))))
        offset = best_window_offset(scores.sum(axis=1), window)
        top = min(height - crop_height, int(round(offset / scale)))
    logger.debug("Attention window at (%d, %d) within %dx%d", left, top, width, height)
    return left, top


def centre_offset(image: Image.Image, crop_width: int, crop_height: int) -> Tuple[int, int]:
    width, height = image.size
    return max(0, (width - crop_width) // 2), max(0, (height - crop_height) // 2)
