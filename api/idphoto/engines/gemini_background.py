from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterator, List, Optional, Union

from google import genai
from google.genai import types
from PIL import Image

from .. import config
from ..cv import transform
from ..errors import BackgroundRemovalTransientError, ConfigurationError

logger = logging.getLogger(__name__)

RESPONSE_MODALITIES = ["TEXT", "IMAGE"]

_DATA_URI_RE = re.compile(r"data:(image/[A-Za-z0-9.+-]+);base64,([A-Za-z0-9+/=]+)")
# Best-effort only: free text has no delimiter marking where a bare base64 blob starts.
_BASE64_TOKEN_RE = re.compile(r"[A-Za-z0-9+/]{100,}={0,2}")


@dataclass(frozen=True)
class InlineImage:
    """Binary image part returned by the model."""

    data: bytes
    mime_type: str


@dataclass(frozen=True)
class EmbeddedImage:
    """Image recovered from the text parts, either a data URI or a bare base64 token."""

    data: bytes
    mime_type: str
    source: str


@dataclass(frozen=True)
class NoImage:
    reason: str


ImagePayload = Union[InlineImage, EmbeddedImage, NoImage]


def _iter_parts(response: Any) -> Iterator[Any]:
    for candidate in response.candidates or []:
        if candidate.content is None:
            continue
        for part in candidate.content.parts or []:
            yield part


def _sniff_mime(data: bytes) -> Optional[str]:
    try:
        image = transform.decode(data)
    except ValueError:
        return None
    return Image.MIME.get(image.format or "", "image/png")


def _decode_base64(text: str) -> Optional[bytes]:
    compact = "".join(text.split())
    compact += "=" * (-len(compact) % 4)
    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError):
        return None


def _scan_text(text: str) -> Optional[EmbeddedImage]:
    for match in _DATA_URI_RE.finditer(text):
        data = _decode_base64(match.group(2))
        if data and _sniff_mime(data):
            return EmbeddedImage(data=data, mime_type=match.group(1), source="data_uri")
    for match in _BASE64_TOKEN_RE.finditer(text):
        data = _decode_base64(match.group(0))
        mime_type = _sniff_mime(data) if data else None
        if data and mime_type:
            return EmbeddedImage(data=data, mime_type=mime_type, source="base64_token")
    return None


def extract_image_payload(response: Any) -> ImagePayload:
    """Find the edited image in a ``generate_content`` response.

    Inline binary parts win. Failing that, text parts are searched for a
    ``data:image/...;base64,`` URI and then for any long base64 run.
    """
    texts: List[str] = []
    for part in _iter_parts(response):
        blob = part.inline_data
        if blob is not None and blob.data:
            data = blob.data if isinstance(blob.data, bytes) else _decode_base64(blob.data)
            mime_type = _sniff_mime(data) if data else None
            if mime_type:
                return InlineImage(data=data, mime_type=blob.mime_type or mime_type)
            logger.debug("Skipping undecodable inline part (%s)", blob.mime_type)
        if part.text:
            texts.append(part.text)

    if texts:
        embedded = _scan_text("\n".join(texts))
        if embedded is not None:
            return embedded
        return NoImage(reason="response contained text but no decodable image")
    return NoImage(reason="response contained no image parts")


class GeminiBackgroundRemover:
    """Background replacement through a Gemini image model.

    One ``remove_background`` call is one API request; retrying is the
    caller's job.
    """

    def __init__(
        self,
        client: "genai.Client",
        *,
        model: str = config.GEMINI_IMAGE_MODEL,
        prompt: str = config.GEMINI_BACKGROUND_PROMPT,
    ) -> None:
        self.client = client
        self.model = model
        self.prompt = prompt

    def remove_background(self, image: bytes, mime_type: str = "image/jpeg") -> bytes:
        try:
            response = self.client.models.generate_content(
                model=self.model,
                contents=[self.prompt, types.Part.from_bytes(data=image, mime_type=mime_type)],
                config=types.GenerateContentConfig(response_modalities=RESPONSE_MODALITIES),
            )
        except Exception as exc:  # pylint: disable=broad-except
            raise BackgroundRemovalTransientError(
                "Background removal request failed.", details=str(exc)
            ) from exc

        payload = extract_image_payload(response)
        if isinstance(payload, NoImage):
            raise BackgroundRemovalTransientError(
                "Background removal returned no image.", details=payload.reason
            )
        if isinstance(payload, EmbeddedImage):
            logger.info("Recovered edited image from response text (%s)", payload.source)
        return payload.data


@lru_cache(maxsize=4)
def _client_for(api_key: str) -> "genai.Client":
    logger.info("Initializing Gemini client for model %s", config.GEMINI_IMAGE_MODEL)
    return genai.Client(
        api_key=api_key,
        http_options=types.HttpOptions(timeout=int(config.GEMINI_TIMEOUT_SECONDS * 1000)),
    )


def build_background_remover(api_key: Optional[str] = None) -> GeminiBackgroundRemover:
    """Remover bound to the process-wide client for ``api_key`` (default: from the environment)."""
    key = api_key or config.gemini_api_key()
    if not key:
        raise ConfigurationError(
            "GEMINI_API_KEY is not configured.",
            details="Set GEMINI_API_KEY (or GOOGLE_API_KEY) before generating photos.",
        )
    return GeminiBackgroundRemover(_client_for(key))
