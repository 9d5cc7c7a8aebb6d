import io

import pytest
from PIL import Image

from conftest import make_image_bytes, make_noise_bytes
from examroom.imaging import ImageDecodeError, compress_image, from_data_url, to_data_url


def _open(data):
    return Image.open(io.BytesIO(data))


def test_small_image_is_reencoded_as_jpeg_at_start_quality():
    result = compress_image(make_image_bytes(), max_bytes=200 * 1024)
    assert _open(result.data).format == "JPEG"
    assert result.quality == 90
    assert (result.width, result.height) == (64, 48)


def test_large_image_is_downscaled_preserving_aspect_ratio():
    result = compress_image(make_image_bytes(3200, 1600), max_dimension=1600)
    assert (result.width, result.height) == (1600, 800)


def test_quality_steps_down_to_fit_budget():
    data = make_noise_bytes(400, 400)
    first = compress_image(data, max_bytes=10 ** 9)
    budget = first.size // 2
    result = compress_image(data, max_bytes=budget)
    assert result.quality < 90
    assert result.size <= budget or result.quality == 70


def test_fallback_shrinks_when_lowest_quality_is_too_big():
    result = compress_image(make_noise_bytes(300, 200), max_bytes=100)
    # final pass: scaled by 0.7 at quality 70
    assert (result.width, result.height) == (210, 140)
    assert result.quality == 70


def test_transparent_png_is_flattened():
    buf = io.BytesIO()
    Image.new("RGBA", (10, 10), (0, 0, 0, 0)).save(buf, format="PNG")
    result = compress_image(buf.getvalue())
    img = _open(result.data)
    assert img.mode == "RGB"
    r, g, b = img.getpixel((5, 5))
    assert min(r, g, b) > 240


def test_decode_failure_raises():
    with pytest.raises(ImageDecodeError):
        compress_image(b"definitely not an image")


def test_data_url_helpers():
    payload = make_image_bytes()
    url = to_data_url(payload)
    assert url.startswith("data:image/jpeg;base64,")
    assert from_data_url(url) == payload
    with pytest.raises(ImageDecodeError):
        from_data_url("not a data url")
    with pytest.raises(ImageDecodeError):
        from_data_url("data:image/jpeg;base64,@@@")
