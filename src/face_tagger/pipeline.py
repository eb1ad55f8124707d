"""
Recognize faces in an exported batch and tag the originating images.

`run_pipeline` sequences the whole run: recognizer check, invocation, cleanup of the
exported files, parsing, mapping results back to source images, ignore filtering,
label normalization and tag application. Failures end up in the returned
`PipelineReport`; nothing is raised to the caller.
"""

import enum
from collections.abc import Callable, Hashable, Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

from loguru import logger

from face_tagger.catalog import Catalog
from face_tagger.config import PipelineConfig
from face_tagger.errors import (
    CatalogError,
    OutputUnreadableError,
    RecognizerProcessError,
    ToolUnavailableError,
)
from face_tagger.recognition import (
    NO_FACES_MARKER,
    normalize_label,
    read_results,
    recognizer_available,
    run_recognizer,
)


ImageT = TypeVar("ImageT", bound=Hashable)
StatusCallback = Callable[[str], None]


class PipelineStatus(enum.Enum):
    COMPLETED = "completed"
    TOOL_UNAVAILABLE = "tool_unavailable"
    RECOGNITION_FAILED = "recognition_failed"
    OUTPUT_UNREADABLE = "output_unreadable"


@dataclass
class PipelineReport:
    """Outcome of one pipeline run."""

    status: PipelineStatus = PipelineStatus.COMPLETED
    tagged: dict[Hashable, list[str]] = field(default_factory=dict)
    ignored: list[Hashable] = field(default_factory=list)
    unmatched: list[str] = field(default_factory=list)
    failed: list[Hashable] = field(default_factory=list)
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status is PipelineStatus.COMPLETED and not self.failed


def log_status(message: str) -> None:
    """Default status sink: user-facing messages go to the console log."""
    logger.info(message)


def export_status(number: int, total: int) -> str:
    """
    Progress line for one exported file.

    Examples:
        >>> export_status(2, 5)
        'Export to face recognition 2/5'

    """
    return f"Export to face recognition {number}/{total}"


def is_ignored(tags: Iterable[str], ignore_substrings: Iterable[str]) -> bool:
    """
    Return True when any tag contains any ignore substring (literal match).

    Examples:
        >>> is_ignored({"travel", "private_skip"}, {"skip"})
        True
        >>> is_ignored({"travel", "private_skip"}, set())
        False

    """
    substrings = list(ignore_substrings)
    if not substrings:
        return False
    ignored = False
    for tag in tags:
        for substring in substrings:
            if substring in tag:
                logger.debug("ignore_tag_found", substring=substring, tag=tag)
                ignored = True
    return ignored


def apply_tags(catalog: Catalog[ImageT], image: ImageT, labels: Iterable[str]) -> list[str]:
    """
    Create each tag if needed and attach it to `image`.

    Both steps are idempotent; repeated labels are applied once.

    Returns:
        Tag names that were newly attached.

    """
    attached: list[str] = []
    for label in dict.fromkeys(labels):
        tag = catalog.create_tag(label)
        if catalog.attach_tag(image, tag):
            logger.debug("tag_attached", tag=tag)
            attached.append(tag)
    return attached


def _export_dir(exported_files: list[Path]) -> Path:
    export_dir = exported_files[0].parent
    strays = [str(p) for p in exported_files if p.parent != export_dir]
    if strays:
        logger.warning("exports_outside_export_dir", export_dir=str(export_dir), files=strays)
    return export_dir


def _delete_exports(exported_files: Iterable[Path]) -> None:
    removed = 0
    for path in exported_files:
        try:
            path.unlink()
            removed += 1
        except OSError as exc:
            logger.warning("export_cleanup_failed", file=str(path), error=str(exc))
    logger.debug("exports_removed", count=removed)


def _labels_to_tags(raw_labels: list[str], unknown_tag_name: str) -> list[str]:
    tags: list[str] = []
    for raw_label in raw_labels:
        if raw_label == NO_FACES_MARKER:
            continue
        tag = normalize_label(raw_label, unknown_tag_name)
        if not tag:
            logger.debug("empty_label_skipped", raw_label=raw_label)
            continue
        tags.append(tag)
    return tags


def _tag_image(
    catalog: Catalog[ImageT],
    image: ImageT,
    raw_labels: list[str],
    config: PipelineConfig,
    report: PipelineReport,
) -> None:
    try:
        if is_ignored(catalog.get_tags(image), config.ignore_substrings):
            logger.info("image_ignored")
            report.ignored.append(image)
            return
        tags = _labels_to_tags(raw_labels, config.unknown_tag_name)
        report.tagged[image] = apply_tags(catalog, image, tags)
    except CatalogError as exc:
        logger.error("tagging_failed", error=exc.message)
        report.failed.append(image)
    else:
        logger.info("image_tagged", tags=report.tagged[image])


def run_pipeline(
    exports: Mapping[ImageT, Path],
    config: PipelineConfig,
    catalog: Catalog[ImageT],
    *,
    on_status: StatusCallback = log_status,
    announce_exports: bool = True,
) -> PipelineReport:
    """
    Recognize faces in the exported files and tag their source images.

    Args:
        exports: Source image identity mapped to its exported file; all exported
                 files are expected in one flat directory
        config: Validated configuration for this run
        catalog: Where existing tags are read and new tags attached
        on_status: Receives short user-facing progress and result messages
        announce_exports: Emit one progress line per exported file before recognition;
                          turn off when the exporter already reported them

    Returns:
        PipelineReport describing what was tagged, ignored, unmatched or failed.

    Note:
        - Exported files are deleted once the recognizer has run, whatever the outcome
        - The recognizer output file is kept next to them for diagnostics
        - If the recognizer is missing nothing is touched, exports included

    """
    report = PipelineReport()

    if not recognizer_available(config):
        error = ToolUnavailableError(config.recognizer)
        logger.error("recognizer_not_found", executable=config.recognizer)
        report.status = PipelineStatus.TOOL_UNAVAILABLE
        report.message = error.user_message
        on_status(error.user_message)
        return report

    exported_files = list(exports.values())
    if not exported_files:
        logger.warning("no_exported_files")
        report.message = "Nothing to recognize"
        on_status(report.message)
        return report

    total = len(exported_files)
    if announce_exports:
        for number in range(1, total + 1):
            on_status(export_status(number, total))

    export_dir = _export_dir(exported_files)
    output_path = export_dir / config.output_filename
    logger.info(
        "starting_face_recognition",
        export_dir=str(export_dir),
        known_faces=str(config.known_faces_path),
        cores=config.core_count,
        files=total,
    )
    on_status("Starting face recognition...")

    try:
        run_recognizer(config, export_dir, output_path)
    except RecognizerProcessError as exc:
        logger.error("face_recognition_failed", error=exc.message, returncode=exc.returncode)
        report.status = PipelineStatus.RECOGNITION_FAILED
        report.message = exc.user_message
        on_status(exc.user_message)
        return report
    finally:
        _delete_exports(exported_files)

    try:
        results = read_results(output_path)
    except OutputUnreadableError as exc:
        logger.error("recognizer_output_unreadable", error=exc.message)
        report.status = PipelineStatus.OUTPUT_UNREADABLE
        report.message = exc.user_message
        on_status(exc.user_message)
        return report

    on_status("Face recognition finished")
    logger.info("recognizer_output_kept", output=str(output_path))

    images_by_path = {Path(path): image for image, path in exports.items()}
    for file_path, raw_labels in results.items():
        image = images_by_path.get(Path(file_path))
        if image is None:
            logger.warning("unmatched_result_file", file=file_path)
            report.unmatched.append(file_path)
            continue
        with logger.contextualize(image=str(image)):
            _tag_image(catalog, image, raw_labels, config, report)

    logger.info(
        "face_tagging_summary",
        tagged=len(report.tagged),
        ignored=len(report.ignored),
        unmatched=len(report.unmatched),
        failed=len(report.failed),
    )
    return report
