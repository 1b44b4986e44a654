"""Tests for upload content types."""
from pathlib import Path

import pytest

from matui.media import OCTET_STREAM, mime_from_path, msgtype_for


class TestMime:
    @pytest.mark.parametrize("name,expected", [
        ("funny_photo.jpg", "image/jpeg"),
        ("SHOUTY.PNG", "image/png"),
        ("clip.mov", "video/quicktime"),
        ("backup.tar.gz", "application/gzip"),
        ("paper.pdf", "application/pdf"),
    ])
    def test_known_types(self, name, expected):
        assert mime_from_path(Path("/home/me") / name) == expected

    @pytest.mark.parametrize("name", ["silly_file.woofy", "Makefile", "notes.gz"])
    def test_unknown_is_octet_stream(self, name):
        assert mime_from_path(Path(name)) == OCTET_STREAM

    @pytest.mark.parametrize("mimetype,msgtype", [
        ("image/png", "m.image"),
        ("video/mp4", "m.video"),
        ("audio/mpeg", "m.audio"),
        ("application/pdf", "m.file"),
        (OCTET_STREAM, "m.file"),
    ])
    def test_msgtype(self, mimetype, msgtype):
        assert msgtype_for(mimetype) == msgtype
