"""Tests for keyword merging and the ExifTool-backed catalog."""

from pathlib import Path
from typing import Any

import pytest

import face_tagger.catalog as c
from face_tagger.errors import CatalogError


class _ExifToolStub:
    """Stand-in for ExifToolHelper that serves canned blocks and records writes."""

    blocks: list[dict[str, Any]] = []
    writes: list[dict[str, Any]] = []
    fail_reads = False

    def __enter__(self) -> "_ExifToolStub":
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None

    def get_tags(self, files: list[str], tags: list[str]) -> list[dict[str, Any]]:
        if self.fail_reads:
            msg = "exiftool could not parse output"
            raise ValueError(msg)
        return [dict(block, SourceFile=f) for f, block in zip(files, self.blocks, strict=False)]

    def set_tags(self, files: list[str], tags: dict[str, Any], params: list[str]) -> None:
        self.writes.append({"files": files, "tags": tags, "params": params})


@pytest.fixture
def exiftool(monkeypatch: pytest.MonkeyPatch) -> type[_ExifToolStub]:
    _ExifToolStub.blocks = []
    _ExifToolStub.writes = []
    _ExifToolStub.fail_reads = False
    monkeypatch.setattr(c, "ExifToolHelper", _ExifToolStub)
    return _ExifToolStub


@pytest.fixture
def photo(tmp_path: Path) -> Path:
    path = tmp_path / "IMG_0001.jpg"
    path.write_bytes(b"\xff\xd8jpeg")
    return path


def test_merge_tag_adds_levels_and_cumulative_paths() -> None:
    """Hierarchical tags add each level flat plus every cumulative path."""
    keywords: dict[str, list[str]] = {"subject": ["Beach"], "hierarchical": []}

    assert c.merge_tag(keywords, "People|Family|Alice") is True
    assert keywords == {
        "subject": ["Beach", "People", "Family", "Alice"],
        "hierarchical": ["People|Family", "People|Family|Alice"],
    }
    assert c.merge_tag(keywords, "People|Family|Alice") is False


def test_merge_tag_ignores_blank_names() -> None:
    """A tag made only of separators or spaces adds nothing."""
    keywords: dict[str, list[str]] = {"subject": [], "hierarchical": []}
    assert c.merge_tag(keywords, " | ") is False
    assert keywords == {"subject": [], "hierarchical": []}


def test_get_tags_combines_image_and_sidecar_keywords(
    exiftool: type[_ExifToolStub],
    photo: Path,
) -> None:
    """Subject, IPTC keywords and hierarchical paths are all visible as tags."""
    photo.with_suffix(".xmp").write_text("<x:xmpmeta/>", encoding="utf-8")
    exiftool.blocks = [
        {"IPTC:Keywords": "travel"},
        {"XMP:Subject": ["People", "Alice"], "XMP:HierarchicalSubject": "People|Alice"},
    ]

    tags = c.XmpCatalog().get_tags(photo)

    assert tags == {"travel", "People", "Alice", "People|Alice"}


def test_attach_tag_writes_merged_keywords_to_sidecar(
    exiftool: type[_ExifToolStub],
    photo: Path,
) -> None:
    """New tags are merged with existing keywords and written to the XMP sidecar."""
    exiftool.blocks = [{"XMP:Subject": ["Beach"]}]

    assert c.XmpCatalog(backup=False).attach_tag(photo, "Alice") is True

    assert len(exiftool.writes) == 1
    write = exiftool.writes[0]
    assert write["files"] == [str(photo.with_suffix(".xmp"))]
    assert write["tags"]["XMP-dc:Subject"] == ["Beach", "Alice"]
    assert write["tags"]["IPTC:Keywords"] == ["Beach", "Alice"]
    assert "XMP-lr:HierarchicalSubject" not in write["tags"]
    assert write["params"] == ["-overwrite_original"]


def test_attach_tag_embeds_when_sidecar_disabled(
    exiftool: type[_ExifToolStub],
    photo: Path,
) -> None:
    """Embedding writes into the photo itself and keeps ExifTool backups by default."""
    c.XmpCatalog(use_sidecar=False).attach_tag(photo, "People|Bob")

    write = exiftool.writes[0]
    assert write["files"] == [str(photo)]
    assert write["tags"]["XMP-lr:HierarchicalSubject"] == ["People|Bob"]
    assert write["params"] == []


def test_attach_tag_already_present_is_a_no_op(
    exiftool: type[_ExifToolStub],
    photo: Path,
) -> None:
    """Attaching an existing tag does not touch the file."""
    exiftool.blocks = [{"XMP:Subject": ["Alice"]}]

    assert c.XmpCatalog().attach_tag(photo, "Alice") is False
    assert exiftool.writes == []


def test_read_failure_raises_catalog_error(
    exiftool: type[_ExifToolStub],
    photo: Path,
) -> None:
    """ExifTool errors surface as CatalogError for the pipeline to record."""
    exiftool.fail_reads = True

    with pytest.raises(CatalogError):
        c.XmpCatalog().get_tags(photo)


def test_create_tag_is_idempotent() -> None:
    """Creating the same tag twice registers it once."""
    catalog = c.XmpCatalog()

    assert catalog.create_tag("People | Alice") == "People|Alice"
    assert catalog.create_tag("People|Alice") == "People|Alice"
    assert catalog.known_tags == {"People|Alice"}
