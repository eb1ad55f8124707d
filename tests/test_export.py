"""Tests for exporting photos as JPEGs for the recognizer."""

from pathlib import Path

from PIL import Image

import face_tagger.export as e


def test_unique_export_path_avoids_collisions(tmp_path: Path) -> None:
    """Photos sharing a stem in different folders get distinct export names."""
    taken: set[str] = set()
    export_dir = tmp_path / "export"

    first = e.unique_export_path(export_dir, Path("/a/IMG_1.CR3"), taken)
    second = e.unique_export_path(export_dir, Path("/b/img_1.jpg"), taken)
    third = e.unique_export_path(export_dir, Path("/c/IMG_1.png"), taken)

    assert [first.name, second.name, third.name] == ["img_1.jpg", "img_1_1.jpg", "img_1_2.jpg"]
    assert first.parent == export_dir


def test_export_images_writes_rgb_jpegs(tmp_path: Path) -> None:
    """Transparent and oversized images come out as bounded RGB JPEGs."""
    sources_dir = tmp_path / "photos"
    sources_dir.mkdir()
    png = sources_dir / "portrait.png"
    Image.new("RGBA", (400, 200), (255, 0, 0, 128)).save(png)
    jpg = sources_dir / "group.jpg"
    Image.new("RGB", (50, 80), (0, 128, 0)).save(jpg)
    export_dir = tmp_path / "export"

    exports = e.export_images([png, jpg], export_dir, max_size=100, quality=80)

    assert set(exports) == {png, jpg}
    assert {path.parent for path in exports.values()} == {export_dir}
    with Image.open(exports[png]) as exported:
        assert exported.format == "JPEG"
        assert exported.mode == "RGB"
        assert max(exported.size) == 100  # noqa: PLR2004
    with Image.open(exports[jpg]) as exported:
        assert exported.size == (50, 80)


def test_export_images_skips_unreadable_files(tmp_path: Path) -> None:
    """A broken photo is left out of the batch instead of failing the export."""
    broken = tmp_path / "broken.jpg"
    broken.write_bytes(b"not an image")
    good = tmp_path / "good.jpg"
    Image.new("RGB", (10, 10)).save(good)

    exports = e.export_images([broken, good], tmp_path / "export")

    assert list(exports) == [good]


def test_unique_export_path_skips_files_already_on_disk(tmp_path: Path) -> None:
    (tmp_path / "a.jpg").write_bytes(b"keep me")

    path = e.unique_export_path(tmp_path, Path("/photos/A.jpg"), set())

    assert path == tmp_path / "a_1.jpg"


def test_export_images_never_overwrites_existing_files(tmp_path: Path) -> None:
    """A work folder that already holds a.jpg keeps it; the export goes to a_1.jpg."""
    photos = tmp_path / "photos"
    photos.mkdir()
    source = photos / "A.jpg"
    Image.new("RGB", (20, 20), (0, 0, 255)).save(source)
    work = tmp_path / "work"
    work.mkdir()
    existing = work / "a.jpg"
    existing.write_bytes(b"unrelated file")

    exports = e.export_images([source], work)

    assert exports[source] == work / "a_1.jpg"
    assert existing.read_bytes() == b"unrelated file"


def test_export_into_source_folder_keeps_the_source(tmp_path: Path) -> None:
    photos = tmp_path / "photos"
    photos.mkdir()
    source = photos / "a.jpg"
    Image.new("RGB", (20, 20), (255, 255, 0)).save(source)
    original = source.read_bytes()

    exports = e.export_images([source], photos)

    assert exports[source] != source
    assert source.read_bytes() == original


def test_export_images_reports_progress_for_every_photo(tmp_path: Path) -> None:
    """Progress is reported after each photo, including ones that failed to export."""
    broken = tmp_path / "broken.jpg"
    broken.write_bytes(b"not an image")
    good = tmp_path / "good.jpg"
    Image.new("RGB", (10, 10)).save(good)
    progress: list[tuple[int, int]] = []

    e.export_images(
        [broken, good],
        tmp_path / "export",
        on_progress=lambda number, total: progress.append((number, total)),
    )

    assert progress == [(1, 2), (2, 2)]
