import os
from typing import Optional

LOG_LEVEL = os.environ.get("IDPHOTO_LOG_LEVEL", "info").lower()

# Physical photo size. 35x45 mm at 300 DPI is the standard ID / passport print.
PHOTO_WIDTH_MM = float(os.environ.get("IDPHOTO_WIDTH_MM", "35"))
PHOTO_HEIGHT_MM = float(os.environ.get("IDPHOTO_HEIGHT_MM", "45"))
PHOTO_DPI = int(os.environ.get("IDPHOTO_DPI", "300"))
MM_PER_INCH = 25.4

# Pre-normalization bounding box and JPEG qualities.
PRENORMALIZE_MAX_SIDE = int(os.environ.get("IDPHOTO_PRENORMALIZE_MAX_SIDE", "1200"))
PRENORMALIZE_QUALITY = int(os.environ.get("IDPHOTO_PRENORMALIZE_QUALITY", "90"))
FINAL_QUALITY = int(os.environ.get("IDPHOTO_FINAL_QUALITY", "95"))
FOCAL_STRATEGY = os.environ.get("IDPHOTO_FOCAL_STRATEGY", "attention").lower()

# Background-removal retry policy: wait attempt * base seconds between attempts.
MAX_ATTEMPTS = int(os.environ.get("IDPHOTO_MAX_ATTEMPTS", "3"))
BACKOFF_BASE_SECONDS = float(os.environ.get("IDPHOTO_BACKOFF_BASE_SECONDS", "2"))

MAX_UPLOAD_BYTES = int(os.environ.get("IDPHOTO_MAX_UPLOAD_BYTES", str(15 * 1024 * 1024)))

GEMINI_IMAGE_MODEL = os.environ.get("GEMINI_IMAGE_MODEL", "gemini-2.5-flash-image")
# Per-request limit for one generate_content call; a timeout counts as a failed attempt.
GEMINI_TIMEOUT_SECONDS = float(os.environ.get("GEMINI_TIMEOUT_SECONDS", "60"))
GEMINI_BACKGROUND_PROMPT = os.environ.get(
    "GEMINI_BACKGROUND_PROMPT",
    "Replace the background of this portrait with a plain, uniform, pure white "
    "background suitable for an ID photo. Keep the person, their face, hair, "
    "clothing, pose and lighting exactly as they are. No shadows, no textures, "
    "no added objects. Return only the edited image.",
)

_DEFAULT_CORS_ORIGINS = [
    "http://localhost",
    "http://localhost:3000",
    "http://127.0.0.1",
    "http://127.0.0.1:3000",
]

_cors_env = os.environ.get("IDPHOTO_CORS_ORIGINS")
if _cors_env:
    CORS_ALLOW_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip()]
else:
    CORS_ALLOW_ORIGINS = _DEFAULT_CORS_ORIGINS

CORS_ALLOW_ORIGIN_REGEX = os.environ.get(
    "IDPHOTO_CORS_ORIGIN_REGEX", r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"
)


def gemini_api_key() -> Optional[str]:
    """Return the generative API key, read at call time so it can be checked per request."""
    key = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")
    return key.strip() if key and key.strip() else None


def mm_to_px(mm: float, dpi: int = PHOTO_DPI) -> int:
    return int(round(mm / MM_PER_INCH * dpi))

