"""Unit tests for the archive extractor."""

import io
import tarfile
from pathlib import Path

import pytest

from repodeploy.core.exceptions import ExtractionError
from repodeploy.services.extractor import ArchiveExtractor


def write_tar(path: Path, entries: list[tarfile.TarInfo], payloads: dict[str, bytes] | None = None) -> Path:
    """Write a tar.gz with hand-crafted entries."""
    payloads = payloads or {}
    with tarfile.open(path, mode="w:gz") as tar:
        for info in entries:
            data = payloads.get(info.name)
            if data is not None:
                info.size = len(data)
                tar.addfile(info, io.BytesIO(data))
            else:
                tar.addfile(info)
    return path


def file_entry(name: str) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.mode = 0o644
    return info


def link_entry(name: str, target: str, kind: bytes = tarfile.SYMTYPE) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.type = kind
    info.linkname = target
    return info


class TestArchiveExtractor:
    """Tests for ArchiveExtractor."""

    @pytest.fixture
    def extractor(self) -> ArchiveExtractor:
        return ArchiveExtractor()

    async def test_extracts_and_strips_root(self, extractor, tarball_factory, site_files, tmp_path):
        archive = tmp_path / "source.tar.gz"
        archive.write_bytes(tarball_factory(site_files))

        root = await extractor.extract(archive, tmp_path / "source")

        assert (root / "index.html").read_bytes() == site_files["index.html"]
        assert (root / "css" / "app.css").read_bytes() == site_files["css/app.css"]
        assert not archive.exists()

    async def test_keeps_layout_without_single_root(self, extractor, tarball_factory, tmp_path):
        archive = tmp_path / "source.tar.gz"
        archive.write_bytes(tarball_factory({"index.html": "a", "about.html": "b"}, root=None))

        root = await extractor.extract(archive, tmp_path / "source")

        assert sorted(p.name for p in root.iterdir()) == ["about.html", "index.html"]

    async def test_rejects_parent_traversal(self, extractor, tmp_path):
        archive = write_tar(
            tmp_path / "evil.tar.gz",
            [file_entry("repo/index.html"), file_entry("repo/../../evil.txt")],
            {"repo/index.html": b"ok", "repo/../../evil.txt": b"pwned"},
        )
        destination = tmp_path / "ws" / "source"

        with pytest.raises(ExtractionError, match="Unsafe path"):
            await extractor.extract(archive, destination)

        assert not (tmp_path / "evil.txt").exists()
        assert not (tmp_path / "ws" / "evil.txt").exists()
        assert not (destination / "index.html").exists()

    async def test_rejects_absolute_path(self, extractor, tmp_path):
        archive = write_tar(
            tmp_path / "evil.tar.gz",
            [file_entry("/etc/evil.conf")],
            {"/etc/evil.conf": b"pwned"},
        )

        with pytest.raises(ExtractionError):
            await extractor.extract(archive, tmp_path / "source")

    async def test_rejects_symlink_outside(self, extractor, tmp_path):
        archive = write_tar(
            tmp_path / "evil.tar.gz",
            [file_entry("repo/index.html"), link_entry("repo/passwd", "../../../etc/passwd")],
            {"repo/index.html": b"ok"},
        )

        with pytest.raises(ExtractionError, match="link escapes"):
            await extractor.extract(archive, tmp_path / "source")

    async def test_allows_symlink_inside(self, extractor, tmp_path):
        archive = write_tar(
            tmp_path / "ok.tar.gz",
            [file_entry("repo/index.html"), link_entry("repo/home.html", "index.html")],
            {"repo/index.html": b"ok"},
        )

        root = await extractor.extract(archive, tmp_path / "source")

        assert (root / "home.html").is_symlink()

    async def test_rejects_hardlink_outside(self, extractor, tmp_path):
        archive = write_tar(
            tmp_path / "evil.tar.gz",
            [file_entry("repo/index.html"), link_entry("repo/x", "/etc/passwd", tarfile.LNKTYPE)],
            {"repo/index.html": b"ok"},
        )

        with pytest.raises(ExtractionError):
            await extractor.extract(archive, tmp_path / "source")

    async def test_rejects_device_entries(self, extractor, tmp_path):
        fifo = tarfile.TarInfo("repo/pipe")
        fifo.type = tarfile.FIFOTYPE
        archive = write_tar(
            tmp_path / "evil.tar.gz",
            [file_entry("repo/index.html"), fifo],
            {"repo/index.html": b"ok"},
        )

        with pytest.raises(ExtractionError, match="Unsupported"):
            await extractor.extract(archive, tmp_path / "source")

    async def test_rejects_corrupt_archive(self, extractor, tmp_path):
        archive = tmp_path / "broken.tar.gz"
        archive.write_bytes(b"this is not a tarball")

        with pytest.raises(ExtractionError, match="Failed to extract"):
            await extractor.extract(archive, tmp_path / "source")

    async def test_rejects_empty_archive(self, extractor, tmp_path):
        archive = write_tar(tmp_path / "empty.tar.gz", [])

        with pytest.raises(ExtractionError):
            await extractor.extract(archive, tmp_path / "source")

    async def test_refuses_non_empty_destination(self, extractor, tarball_factory, tmp_path):
        archive = tmp_path / "source.tar.gz"
        archive.write_bytes(tarball_factory({"index.html": "a"}))
        destination = tmp_path / "source"
        destination.mkdir()
        (destination / "existing.txt").write_text("keep me")

        with pytest.raises(ExtractionError, match="non-empty"):
            await extractor.extract(archive, destination)
        assert (destination / "existing.txt").read_text() == "keep me"
