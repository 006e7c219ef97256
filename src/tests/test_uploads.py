"""Tests for image uploads."""

import hashlib
import os

import pytest

from mdwiki.core.errors import TooLargeError, UnsupportedTypeError, UploadError
from mdwiki.core.uploads import (
    NAME_LENGTH,
    UploadHandler,
    format_size,
    normalize_content_type,
)

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def handler(tmp_path):
    return UploadHandler(tmp_path / "images", max_bytes=10 * 1024 * 1024)


class TestContentType:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("image/png", "image/png"),
            ("Image/PNG", "image/png"),
            ("image/jpeg; charset=binary", "image/jpeg"),
            ("", ""),
            (None, ""),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_content_type(raw) == expected

    @pytest.mark.parametrize(
        "content_type,extension",
        [("image/jpeg", "jpg"), ("image/png", "png"), ("image/gif", "gif"), ("image/webp", "webp")],
    )
    def test_extension(self, handler, content_type, extension):
        assert handler.extension_for(content_type) == extension

    @pytest.mark.parametrize("content_type", ["text/plain", "image/svg+xml", "application/octet-stream", None])
    def test_unsupported(self, handler, content_type):
        with pytest.raises(UnsupportedTypeError):
            handler.extension_for(content_type)

    @pytest.mark.parametrize(
        "size,expected",
        [(8 * 1024 * 1024, "8 MB"), (1536 * 1024, "1.5 MB"), (1023 * 1024, "1023 KB"), (1023, "1023 bytes")],
    )
    def test_format_size(self, size, expected):
        assert format_size(size) == expected


class TestStore:
    def test_store_png(self, handler, alice):
        reference = handler.store(PNG, "image/png", alice)
        name = hashlib.sha256(PNG).hexdigest()[:NAME_LENGTH] + ".png"
        assert reference.name == name
        assert reference.url == f"/images/{name}"
        assert reference.size == len(PNG)
        assert reference.created is True
        assert (handler.assets_path / name).read_bytes() == PNG

    def test_leaves_no_temp_files(self, handler, alice):
        handler.store(PNG, "image/png", alice)
        assert [p.name for p in handler.assets_path.iterdir()] == [
            hashlib.sha256(PNG).hexdigest()[:NAME_LENGTH] + ".png"
        ]

    def test_unsupported_type_writes_nothing(self, handler, alice):
        with pytest.raises(UnsupportedTypeError):
            handler.store(b"hello", "text/plain", alice)
        assert not handler.assets_path.exists()

    def test_too_large_writes_nothing(self, handler, alice):
        data = b"\x00" * (50 * 1024 * 1024)
        with pytest.raises(TooLargeError) as info:
            handler.store(data, "image/png", alice)
        assert "limit 10 MB" in info.value.message
        assert not handler.assets_path.exists()

    @pytest.mark.parametrize(
        "max_bytes,shown",
        [(10 * 1024 * 1024, "10 MB"), (512 * 1024, "512 KB"), (100, "100 bytes")],
    )
    def test_too_large_message_shows_limit(self, tmp_path, alice, max_bytes, shown):
        handler = UploadHandler(tmp_path, max_bytes=max_bytes)
        with pytest.raises(TooLargeError) as info:
            handler.store(b"\x00" * (max_bytes + 1), "image/png", alice)
        assert f"limit {shown}" in info.value.message

    def test_limit_is_inclusive(self, tmp_path, alice):
        handler = UploadHandler(tmp_path, max_bytes=len(PNG))
        assert handler.store(PNG, "image/png", alice).created

    def test_same_content_deduplicated(self, handler, alice, bob):
        first = handler.store(PNG, "image/png", alice)
        second = handler.store(PNG, "image/png; q=1", bob)
        assert second.url == first.url
        assert second.created is False
        assert len(list(handler.assets_path.iterdir())) == 1

    def test_different_content_different_names(self, handler, alice):
        first = handler.store(PNG, "image/png", alice)
        second = handler.store(PNG + b"\x01", "image/png", alice)
        assert first.url != second.url

    def test_existing_file_never_overwritten(self, handler, alice):
        name = hashlib.sha256(PNG).hexdigest()[:NAME_LENGTH] + ".png"
        handler.assets_path.mkdir(parents=True)
        (handler.assets_path / name).write_bytes(b"original")

        reference = handler.store(PNG, "image/png", alice)
        assert reference.created is False
        assert (handler.assets_path / name).read_bytes() == b"original"

    def test_lost_race_reports_existing(self, handler, alice, monkeypatch):
        def link_exists(src, dst):
            raise FileExistsError(dst)

        monkeypatch.setattr(os, "link", link_exists)
        assert handler.store(PNG, "image/png", alice).created is False

    def test_filesystem_error(self, handler, alice, monkeypatch):
        def link_fails(src, dst):
            raise PermissionError("read-only")

        monkeypatch.setattr(os, "link", link_fails)
        with pytest.raises(UploadError):
            handler.store(PNG, "image/png", alice)
        assert list(handler.assets_path.iterdir()) == []

    def test_from_settings(self, settings):
        settings.assets_dir = "media"
        settings.max_upload_bytes = 1024
        handler = UploadHandler.from_settings(settings)
        assert handler.assets_path == settings.wiki_root / "src" / "media"
        assert handler.url_prefix == "/media"
        assert handler.max_bytes == 1024
