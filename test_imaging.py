import io

import numpy as np
import pytest
from PIL import Image

from conftest import bordered_piece, encode_png
from slidematch.errors import DecodeError, ImageReadError
from slidematch.imaging import (
    Rect,
    alpha_bounding_box,
    crop_to_alpha,
    decode_image,
    read_image_bytes,
    to_grayscale,
)


@pytest.mark.unit
def test_alpha_bbox_skips_transparent_border():
    patch = np.full((10, 10, 3), 200, dtype=np.uint8)
    rgba = bordered_piece(patch, border=2)

    rect, cropped = crop_to_alpha(rgba)

    assert rect == Rect(2, 2, 10, 10)
    assert cropped.shape == (10, 10, 4)
    assert (cropped[:, :, 3] == 255).all()


@pytest.mark.unit
def test_alpha_bbox_single_pixel():
    rgba = np.zeros((8, 12, 4), dtype=np.uint8)
    rgba[5, 9, 3] = 1

    assert alpha_bounding_box(rgba) == Rect(9, 5, 1, 1)


@pytest.mark.unit
def test_fully_transparent_image_is_not_cropped():
    rgba = np.zeros((6, 9, 4), dtype=np.uint8)
    rgba[:, :, 0] = 77

    rect, cropped = crop_to_alpha(rgba)

    assert rect == Rect(0, 0, 9, 6)
    assert np.array_equal(cropped, rgba)
    assert cropped is not rgba


@pytest.mark.unit
def test_crop_rejects_non_rgba():
    with pytest.raises(ValueError):
        crop_to_alpha(np.zeros((4, 4, 3), dtype=np.uint8))


@pytest.mark.unit
@pytest.mark.parametrize(
    "rgb,expected",
    [
        ((255, 0, 0), 76),
        ((0, 255, 0), 150),
        ((0, 0, 255), 29),
        ((255, 255, 255), 255),
        ((0, 0, 0), 0),
        ((100, 150, 200), 141),
        ((0, 1, 201), 24),
        ((0, 0, 57), 6),
    ],
)
def test_grayscale_uses_perceptual_weights(rgb, expected):
    img = np.zeros((2, 3, 4), dtype=np.uint8)
    img[:, :, :3] = rgb
    img[:, :, 3] = 0  # alpha must not matter

    gray = to_grayscale(img)

    assert gray.shape == (2, 3)
    assert gray.dtype == np.uint8
    assert (gray == expected).all()


@pytest.mark.unit
def test_grayscale_passes_single_channel_through():
    gray = np.arange(12, dtype=np.uint8).reshape(3, 4)
    out = to_grayscale(gray)
    assert np.array_equal(out, gray)
    assert out is not gray


@pytest.mark.unit
def test_decode_rgb_png_gets_opaque_alpha():
    rgb = np.full((5, 7, 3), 33, dtype=np.uint8)

    rgba = decode_image(encode_png(rgb), "target")

    assert rgba.shape == (5, 7, 4)
    assert (rgba[:, :, 3] == 255).all()
    assert (rgba[:, :, :3] == 33).all()


@pytest.mark.unit
def test_decode_grayscale_png():
    gray = np.full((4, 4), 99, dtype=np.uint8)
    rgba = decode_image(encode_png(gray), "background")
    assert rgba.shape == (4, 4, 4)
    assert (rgba[:, :, 0] == 99).all()


@pytest.mark.unit
def test_decode_16bit_png_scales_to_8bit():
    samples = np.array([[0, 255, 40000, 65535]] * 3, dtype=np.uint16)
    buf = io.BytesIO()
    Image.fromarray(samples).save(buf, format="PNG")

    rgba = decode_image(buf.getvalue(), "background")

    assert rgba.dtype == np.uint8
    assert rgba.shape == (3, 4, 4)
    for channel in range(3):
        assert rgba[0, :, channel].tolist() == [0, 0, 156, 255]
    assert (rgba[:, :, 3] == 255).all()
    assert to_grayscale(rgba)[0].tolist() == [0, 0, 156, 255]


@pytest.mark.unit
@pytest.mark.parametrize("label", ["target", "background"])
def test_decode_garbage_names_the_image(label):
    with pytest.raises(DecodeError, match=label):
        decode_image(b"definitely not an image", label)


@pytest.mark.unit
def test_decode_empty_buffer():
    with pytest.raises(DecodeError, match="empty"):
        decode_image(b"", "target")


@pytest.mark.unit
def test_decode_rejects_non_bytes():
    with pytest.raises(DecodeError):
        decode_image("cut.png", "target")


@pytest.mark.unit
def test_read_image_bytes_reports_path(tmp_path):
    missing = tmp_path / "nope.png"
    with pytest.raises(ImageReadError) as excinfo:
        read_image_bytes(missing, "target")
    assert str(missing) in str(excinfo.value)
    assert isinstance(excinfo.value, OSError)
    assert isinstance(excinfo.value.__cause__, OSError)


@pytest.mark.unit
def test_read_image_bytes_roundtrip(tmp_path):
    path = tmp_path / "x.bin"
    path.write_bytes(b"\x89PNG...")
    assert read_image_bytes(str(path), "background") == b"\x89PNG..."
