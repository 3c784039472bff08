from io import BytesIO
from unittest.mock import MagicMock

from PIL import Image

from common.thumbnails import ThumbnailCache


def _webp_bytes() -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (8, 8), "red").save(buffer, format="WEBP")
    return buffer.getvalue()


def test_thumbnail_is_fetched_converted_and_cached(tmp_path):
    client = MagicMock()
    client.get_thumbnail_image.return_value = _webp_bytes()
    cache = ThumbnailCache(client, tmp_path / "thumbs")

    path = cache.get_thumbnail_path(42)

    assert path == tmp_path / "thumbs" / "42.png"
    with Image.open(path) as image:
        assert image.format == "PNG"
        assert image.size == (8, 8)

    assert cache.get_thumbnail_path(42) == path
    client.get_thumbnail_image.assert_called_once_with(42)


def test_thumbnail_missing_returns_none(tmp_path):
    client = MagicMock()
    client.get_thumbnail_image.return_value = None
    cache = ThumbnailCache(client, tmp_path)

    assert cache.get_thumbnail_path(1) is None
    assert not (tmp_path / "1.png").exists()


def test_undecodable_thumbnail_is_cached_raw(tmp_path):
    client = MagicMock()
    client.get_thumbnail_image.return_value = b"not an image"
    cache = ThumbnailCache(client, tmp_path)

    path = cache.get_thumbnail_path(9)

    assert path.read_bytes() == b"not an image"
