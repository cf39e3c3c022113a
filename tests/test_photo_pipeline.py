from __future__ import annotations

import io
from typing import List, Optional

import pytest
from PIL import Image

from api.idphoto.cv import transform
from api.idphoto.errors import CropError, InvalidInput
from api.idphoto.photo_pipeline import (
    BACKGROUND_FALLBACK,
    BACKGROUND_ORIGINAL,
    BACKGROUND_REMOVED,
    DEFAULT_PHOTO_SPEC,
    PhotoPipeline,
    PhotoSpec,
)


def make_image(width: int = 640, height: int = 480, color=(200, 40, 40), fmt: str = "JPEG", exif=None) -> bytes:
    buffer = io.BytesIO()
    save_kwargs = {"format": fmt}
    if exif is not None:
        save_kwargs["exif"] = exif
    Image.new("RGB", (width, height), color=color).save(buffer, **save_kwargs)
    return buffer.getvalue()


class ScriptedRemover:
    """Fails ``failures`` times, then returns ``result`` (the input when None)."""

    def __init__(self, failures: int = 0, result: Optional[bytes] = None) -> None:
        self.failures = failures
        self.result = result
        self.calls = 0
        self.inputs: List[bytes] = []

    def remove_background(self, image: bytes, mime_type: str = "image/jpeg") -> bytes:
        self.calls += 1
        self.inputs.append(image)
        if self.calls <= self.failures:
            raise RuntimeError(f"transient failure #{self.calls}")
        return self.result if self.result is not None else image


class GarbageRemover:
    def __init__(self) -> None:
        self.calls = 0

    def remove_background(self, image: bytes, mime_type: str = "image/jpeg") -> bytes:
        self.calls += 1
        return b"<html>not an image</html>"


def build(remover, **kwargs):
    delays: List[float] = []
    pipeline = PhotoPipeline(remover=remover, sleep=delays.append, **kwargs)
    return pipeline, delays


def test_default_photo_size_is_35x45mm_at_300dpi():
    assert (DEFAULT_PHOTO_SPEC.width_px, DEFAULT_PHOTO_SPEC.height_px) == (413, 531)
    assert DEFAULT_PHOTO_SPEC.dpi == 300


def test_first_attempt_success_makes_one_call():
    remover = ScriptedRemover()
    pipeline, delays = build(remover)

    result = pipeline.run(make_image())

    assert remover.calls == 1
    assert delays == []
    assert result.background == BACKGROUND_REMOVED
    assert result.attempts == 1
    assert (result.width, result.height) == (413, 531)
    assert Image.open(io.BytesIO(result.image)).size == (413, 531)


@pytest.mark.parametrize("failures", [1, 2])
def test_success_on_attempt_k_makes_exactly_k_calls(failures):
    remover = ScriptedRemover(failures=failures)
    pipeline, delays = build(remover)

    result = pipeline.run(make_image())

    assert remover.calls == failures + 1
    assert result.attempts == failures + 1
    assert result.background == BACKGROUND_REMOVED
    assert delays == [2.0 * attempt for attempt in range(1, failures + 1)]


def test_always_failing_remover_falls_back_to_white_composite():
    remover = ScriptedRemover(failures=99)
    pipeline, delays = build(remover)

    result = pipeline.run(make_image(color=(200, 40, 40)))

    assert remover.calls == 3
    assert delays == [2.0, 4.0]
    assert all(later > earlier for earlier, later in zip(delays, delays[1:]))
    assert result.background == BACKGROUND_FALLBACK
    image = Image.open(io.BytesIO(result.image)).convert("RGB")
    assert image.size == (413, 531)
    red, green, blue = image.getpixel((206, 265))
    assert red > 150 and green < 100 and blue < 100


def test_undecodable_remover_output_counts_as_failed_attempt():
    remover = GarbageRemover()
    pipeline, delays = build(remover)

    result = pipeline.run(make_image())

    assert remover.calls == 3
    assert len(delays) == 2
    assert result.background == BACKGROUND_FALLBACK


def test_fallback_composite_error_keeps_normalized_image(monkeypatch):
    def broken_composite(*args, **kwargs):
        raise OSError("canvas allocation failed")

    monkeypatch.setattr(transform, "white_composite", broken_composite)
    pipeline, _ = build(ScriptedRemover(failures=99))

    result = pipeline.run(make_image())

    assert result.background == BACKGROUND_ORIGINAL
    assert (result.width, result.height) == (413, 531)


def test_remover_receives_normalized_jpeg_within_bounding_box():
    remover = ScriptedRemover()
    pipeline, _ = build(remover)

    pipeline.run(make_image(3000, 2000, fmt="PNG"))

    sent = Image.open(io.BytesIO(remover.inputs[0]))
    assert sent.format == "JPEG"
    assert sent.size == (1200, 800)


def test_exif_orientation_is_applied_before_background_removal():
    exif = Image.Exif()
    exif[0x0112] = 6  # rotate 90 degrees clockwise on display
    remover = ScriptedRemover()
    pipeline, _ = build(remover)

    pipeline.run(make_image(400, 200, exif=exif))

    assert Image.open(io.BytesIO(remover.inputs[0])).size == (200, 400)


def test_empty_input_is_invalid():
    remover = ScriptedRemover()
    pipeline, _ = build(remover)
    with pytest.raises(InvalidInput):
        pipeline.run(b"")
    assert remover.calls == 0


def test_undecodable_input_is_invalid():
    remover = ScriptedRemover()
    pipeline, _ = build(remover)
    with pytest.raises(InvalidInput) as excinfo:
        pipeline.run(b"not an image at all")
    assert excinfo.value.status_code == 400
    assert remover.calls == 0


def test_crop_failure_is_fatal(monkeypatch):
    def broken_crop(*args, **kwargs):
        raise OSError("encoder exploded")

    monkeypatch.setattr(transform, "cover_crop", broken_crop)
    pipeline, _ = build(ScriptedRemover())

    with pytest.raises(CropError) as excinfo:
        pipeline.run(make_image())
    assert excinfo.value.status_code == 500


def test_crop_to_target_is_idempotent_on_pipeline_output():
    pipeline, _ = build(ScriptedRemover())
    result = pipeline.run(make_image(1024, 768))

    cropped_again = pipeline.crop_to_target(result.image)

    assert Image.open(io.BytesIO(cropped_again)).size == (result.width, result.height)


def test_custom_photo_size_and_attempt_budget():
    spec = PhotoSpec.from_physical(50.8, 50.8, 300)
    remover = ScriptedRemover(failures=99)
    pipeline, delays = build(remover, spec=spec, max_attempts=2, backoff_base=0.5)

    result = pipeline.run(make_image())

    assert (result.width, result.height) == (600, 600)
    assert remover.calls == 2
    assert delays == [0.5]


def test_data_uri_has_jpeg_prefix():
    pipeline, _ = build(ScriptedRemover())
    result = pipeline.run(make_image())
    assert result.to_data_uri().startswith("data:image/jpeg;base64,")


def test_zero_attempt_budget_is_rejected():
    with pytest.raises(ValueError):
        PhotoPipeline(remover=ScriptedRemover(), max_attempts=0)
