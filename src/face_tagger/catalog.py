"""
Catalog boundary: where tags are read from and attached to.

The pipeline only needs three capabilities, described by `Catalog`. `XmpCatalog`
implements them on top of ExifTool, storing tags as Lightroom-compatible keywords
either in an XMP sidecar or embedded in the photo.
"""

from collections.abc import Hashable
from pathlib import Path
from typing import Protocol, TypeVar

from exiftool import ExifToolHelper  # type: ignore[attr-defined]
from exiftool.exceptions import ExifToolExecuteError
from loguru import logger

from face_tagger.errors import CatalogError


ImageT_contra = TypeVar("ImageT_contra", bound=Hashable, contravariant=True)

HIERARCHY_SEPARATOR = "|"
MIN_HIERARCHICAL_DEPTH = 2
KEYWORD_TAGS = (
    "XMP:Subject",
    "XMP:HierarchicalSubject",
    "IPTC:Keywords",
)


class Catalog(Protocol[ImageT_contra]):
    """Tag store the pipeline writes recognized names into."""

    def get_tags(self, image: ImageT_contra) -> set[str]:
        """Return the tag names currently attached to `image`."""
        ...

    def create_tag(self, name: str) -> str:
        """Make sure a tag called `name` exists and return its name."""
        ...

    def attach_tag(self, image: ImageT_contra, name: str) -> bool:
        """Attach tag `name` to `image`; return False when it was already attached."""
        ...


def split_hierarchy(tag: str) -> list[str]:
    """
    Split a `Parent|Child` tag into its non-blank levels, root first.

    Examples:
        >>> split_hierarchy("People|Family|Alice")
        ['People', 'Family', 'Alice']
        >>> split_hierarchy(" Alice ")
        ['Alice']

    """
    return [part.strip() for part in tag.split(HIERARCHY_SEPARATOR) if part.strip()]


def cumulative_paths(levels: list[str]) -> list[str]:
    """
    Return every hierarchy path Lightroom expects for a chain of levels.

    Lightroom stores `A|B|C` together with `A|B`; single levels are flat keywords.

    Examples:
        >>> cumulative_paths(["People", "Family", "Alice"])
        ['People|Family', 'People|Family|Alice']
        >>> cumulative_paths(["Alice"])
        []

    """
    return [
        HIERARCHY_SEPARATOR.join(levels[:depth])
        for depth in range(MIN_HIERARCHICAL_DEPTH, len(levels) + 1)
    ]


def _as_list(raw_value: object) -> list[str]:
    if isinstance(raw_value, (list, tuple, set)):
        return [str(item) for item in raw_value if str(item).strip()]
    return [str(raw_value)] if str(raw_value).strip() else []


def merge_tag(keywords: dict[str, list[str]], tag: str) -> bool:
    """
    Add `tag` to a keyword dict in place.

    Every level goes into the flat `subject` list and every cumulative path into
    `hierarchical`. Existing entries are never duplicated.

    Returns:
        True if anything was added.

    Examples:
        >>> kw = {"subject": ["Beach"], "hierarchical": []}
        >>> merge_tag(kw, "People|Alice")
        True
        >>> kw
        {'subject': ['Beach', 'People', 'Alice'], 'hierarchical': ['People|Alice']}
        >>> merge_tag(kw, "People|Alice")
        False

    """
    levels = split_hierarchy(tag)
    if not levels:
        return False

    subject = keywords.setdefault("subject", [])
    hierarchical = keywords.setdefault("hierarchical", [])
    changed = False
    for level in levels:
        if level not in subject:
            subject.append(level)
            changed = True
    for path in cumulative_paths(levels):
        if path not in hierarchical:
            hierarchical.append(path)
            changed = True
    return changed


class XmpCatalog:
    """
    Catalog backed by photo metadata, with the photo `Path` as image identity.

    Reads keywords from the photo and its `.xmp` sidecar; writes them to the sidecar
    (default) or embeds them into the photo.
    """

    def __init__(self, *, use_sidecar: bool = True, backup: bool = True) -> None:
        self.use_sidecar = use_sidecar
        self.backup = backup
        self._known_tags: set[str] = set()

    def _targets(self, image: Path) -> list[str]:
        targets: list[str] = []
        xmp_path = image.with_suffix(".xmp")
        if image.exists():
            targets.append(str(image))
        if xmp_path.exists():
            targets.append(str(xmp_path))
        return targets

    def read_keywords(self, image: Path) -> dict[str, list[str]]:
        """
        Read existing keywords from the image and its sidecar.

        Returns:
            Dictionary with 'subject' (XMP-dc:Subject merged with IPTC:Keywords) and
            'hierarchical' (XMP-lr:HierarchicalSubject), de-duplicated in order.

        Raises:
            CatalogError: ExifTool could not read the metadata.

        """
        result: dict[str, list[str]] = {"subject": [], "hierarchical": []}
        targets = self._targets(image)
        if not targets:
            logger.info("no_metadata_targets_found", image=str(image))
            return result

        key_map = {
            "XMP:Subject": "subject",
            "XMP:HierarchicalSubject": "hierarchical",
            "IPTC:Keywords": "subject",
        }
        try:
            with ExifToolHelper() as et:  # type: ignore[no-untyped-call]
                metadata_blocks = et.get_tags(files=targets, tags=list(KEYWORD_TAGS))
        except (ValueError, TypeError, ExifToolExecuteError) as e:
            msg = f"Cannot read keywords of {image}: {e}"
            raise CatalogError(msg, user_message="Reading tags failed") from e

        for block in metadata_blocks:
            for exif_key, result_key in key_map.items():
                if exif_key in block:
                    result[result_key].extend(_as_list(block[exif_key]))

        for key, values in result.items():
            result[key] = list(dict.fromkeys(values))
        return result

    def write_keywords(self, image: Path, keywords: dict[str, list[str]]) -> None:
        """
        Write keywords to the sidecar or the image in Lightroom-compatible form.

        Raises:
            CatalogError: ExifTool could not write the metadata.

        """
        target_path = image.with_suffix(".xmp") if self.use_sidecar else image
        tags_to_write: dict[str, list[str]] = {
            "XMP-dc:Subject": keywords.get("subject", []),
            # Lightroom prioritizes IPTC:Keywords for JPEGs, so mirror the Subject list there.
            "IPTC:Keywords": keywords.get("subject", []),
        }
        if keywords.get("hierarchical"):
            tags_to_write["XMP-lr:HierarchicalSubject"] = keywords["hierarchical"]

        params = [] if self.backup else ["-overwrite_original"]
        try:
            with ExifToolHelper() as et:  # type: ignore[no-untyped-call]
                et.set_tags(files=[str(target_path)], tags=tags_to_write, params=params)
        except (ValueError, TypeError, ExifToolExecuteError) as e:
            msg = f"Cannot write keywords to {target_path}: {e}"
            raise CatalogError(msg, user_message="Writing tags failed") from e

        logger.debug(
            "keywords_written",
            target=str(target_path),
            mode="sidecar" if self.use_sidecar else "embedded",
            subject_keywords=len(keywords.get("subject", [])),
            hierarchical_keywords=len(keywords.get("hierarchical", [])),
        )

    def get_tags(self, image: Path) -> set[str]:
        keywords = self.read_keywords(image)
        return set(keywords["subject"]) | set(keywords["hierarchical"])

    def create_tag(self, name: str) -> str:
        # Metadata keywords have no registry of their own; remember names for the summary.
        name = HIERARCHY_SEPARATOR.join(split_hierarchy(name))
        if name and name not in self._known_tags:
            self._known_tags.add(name)
            logger.debug("tag_registered", tag=name)
        return name

    def attach_tag(self, image: Path, name: str) -> bool:
        keywords = self.read_keywords(image)
        if not merge_tag(keywords, name):
            logger.debug("tag_already_attached", image=str(image), tag=name)
            return False
        self.write_keywords(image, keywords)
        return True

    @property
    def known_tags(self) -> set[str]:
        return set(self._known_tags)
