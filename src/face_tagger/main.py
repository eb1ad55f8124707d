#!/usr/bin/env python3
"""
Face Tagger: CLI app to tag photos with the people recognized in them.

Photos are exported as temporary JPEGs, handed to the face_recognition command-line
tool together with a folder of known faces, and every recognized name is written back
as a Lightroom-compatible keyword (XMP sidecar by default, or embedded in the photo).

Known faces are reference images named after the tag to apply. Several images of one
person may carry a trailing number, which is dropped from the tag:
    known_faces/Alice1.jpg, known_faces/Alice2.jpg -> Alice
    known_faces/People|Bob.jpg                     -> People|Bob (hierarchical)

Requirements:
 - face_recognition (https://github.com/ageitgey/face_recognition) on PATH.
 - Exiftool installed and available in PATH.

"""
# ruff: noqa: PLR0913

import contextlib
import sys
import tempfile
from datetime import UTC, datetime
from itertools import chain
from pathlib import Path
from typing import Annotated, Literal

from cyclopts import App, Parameter, validators
from loguru import logger
from pydantic import ValidationError

from face_tagger.catalog import XmpCatalog
from face_tagger.config import (
    DEFAULT_IGNORE_TAGS,
    DEFAULT_KNOWN_FACES,
    DEFAULT_RECOGNIZER,
    DEFAULT_UNKNOWN_TAG,
    PipelineConfig,
    Preferences,
)
from face_tagger.export import DEFAULT_DIMENSIONS, DEFAULT_JPEG_QUALITY, export_images
from face_tagger.pipeline import export_status, log_status, run_pipeline
from face_tagger.recognition import recognizer_available


LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL", "OFF"]

FILE_LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{module}:{function}:{line} | {message} | {extra}"
)
CONSOLE_LOG_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <7}</level> | "
    "<level>{message}</level> <yellow>{extra}</yellow>"
)

# Cyclopts app
__version__ = "0.1.0"
app = App(
    name="face-tagger",
    version=__version__,
)


def setup_logging(
    file_log_level: LogLevel = "DEBUG",
    console_log_level: LogLevel = "INFO",
    log_folder: Path = Path("logs"),
) -> Path | None:
    """
    Route Loguru output to a per-run log file and to stderr.

    Either sink is skipped when its level is 'OFF'. The file keeps the full record
    (module, function, bound context); the console shows status lines and context only.

    Returns:
        Path of the run's log file, or None when file logging is off.

    """
    logger.remove()

    log_file: Path | None = None
    if file_log_level != "OFF":
        log_folder.mkdir(parents=True, exist_ok=True)
        log_file = log_folder / datetime.now(tz=UTC).strftime("face_tagger-%Y%m%d-%H%M%S.log")
        logger.add(
            log_file,
            level=file_log_level,
            format=FILE_LOG_FORMAT,
            retention="10 days",
            compression="zip",
        )

    if console_log_level != "OFF":
        logger.add(sys.stderr, level=console_log_level, colorize=True, format=CONSOLE_LOG_FORMAT)

    return log_file


def _parse_extensions(image_extensions: str) -> set[str]:
    """
    Normalize comma-separated extensions into a lowercase set like {".cr3", ".jpg"}.

    Examples:
        >>> sorted(_parse_extensions("cr3, jpg ,PNG"))
        ['.cr3', '.jpg', '.png']

    """
    return {
        f".{ext.strip().lstrip('.').lower()}"
        for ext in image_extensions.split(",")
        if ext.strip().lstrip(".")
    }


def _resolve_image_files(
    inputs: list[Path],
    ext_set: set[str],
    *,
    recursive: bool,
) -> list[Path]:
    """
    Resolve provided inputs into a list of photos.

    - Directories are expanded by extension, case-insensitively (honoring --recursive)
    - Explicit files are accepted as-is
    - Order is preserved and duplicates removed
    """
    pattern = "**/*" if recursive else "*"

    files_from_dirs: list[Path] = []
    files_explicit: list[Path] = []
    for path in inputs:
        path_resolved = path
        with contextlib.suppress(OSError, RuntimeError):
            path_resolved = path.resolve()
        if path_resolved.is_dir():
            files_from_dirs.extend(
                sorted(
                    p
                    for p in path_resolved.glob(pattern)
                    if p.is_file() and p.suffix.lower() in ext_set
                ),
            )
        elif path_resolved.is_file():
            files_explicit.append(path_resolved)
        else:
            logger.warning("input_not_file_or_dir", path=str(path))

    return list(dict.fromkeys(chain(files_explicit, files_from_dirs)))


def _load_skip_list(skip_file: Path) -> set[str]:
    try:
        content = skip_file.read_text(encoding="utf-8")
    except OSError as exc:
        logger.error("skip_file_read_failed", file=str(skip_file), error=str(exc))
        raise SystemExit(1) from exc

    entries = {
        line.strip()
        for line in content.splitlines()
        if line.strip() and not line.strip().startswith("#")
    }
    logger.info("skip_entries_loaded", count=len(entries), file=str(skip_file))
    return entries


def _apply_skip_file(image_files: list[Path], skip_file: Path | None) -> list[Path]:
    """Drop photos whose name or full path is listed (case-insensitively) in `skip_file`."""
    if not skip_file:
        return image_files

    skip_keys = {entry.casefold() for entry in _load_skip_list(skip_file)}
    filtered = [
        path
        for path in image_files
        if path.name.casefold() not in skip_keys and str(path).casefold() not in skip_keys
    ]
    if len(filtered) < len(image_files):
        logger.info(
            "skip_list_applied",
            skipped=len(image_files) - len(filtered),
            remaining=len(filtered),
        )
    return filtered


def _build_config(preferences: Preferences) -> PipelineConfig:
    config = preferences.to_pipeline_config()
    if not config.known_faces_path.is_dir():
        logger.error("known_faces_dir_missing", path=str(config.known_faces_path))
        raise SystemExit(1)
    logger.debug(
        "pipeline_config_resolved",
        known_faces=str(config.known_faces_path),
        cores=config.core_count,
        ignore=sorted(config.ignore_substrings),
        unknown_tag=config.unknown_tag_name,
    )
    return config


@app.default
def tag(
    inputs: Annotated[
        list[Path] | None,
        Parameter(
            name=("--input", "-i"),
            validator=validators.Path(exists=True),
            help="One or more paths: files and/or directories (repeat this option)",
        ),
    ] = None,
    skip_from: Annotated[
        Path | None,
        Parameter(
            name=("--skip-from",),
            validator=validators.Path(exists=True, file_okay=True, dir_okay=False),
            help="Path to newline-delimited text file listing filenames to skip",
        ),
    ] = None,
    *,
    image_extensions: Annotated[
        str,
        Parameter(
            name=("--ext", "--extensions"),
            help="Comma-separated image file extensions to process (case insensitive)",
        ),
    ] = "jpg,jpeg",
    recursive: Annotated[
        bool,
        Parameter(
            name=("--recursive", "-r"),
            help="Process files in subdirectories recursively",
        ),
    ] = False,
    known_faces: Annotated[
        Path,
        Parameter(
            name=("--known-faces", "-k"),
            help="Folder with reference faces; file names (minus digits) become tags",
        ),
    ] = DEFAULT_KNOWN_FACES,
    unknown_tag: Annotated[
        str,
        Parameter(
            name=("--unknown-tag",),
            help="Tag for faces that are not recognized",
        ),
    ] = DEFAULT_UNKNOWN_TAG,
    ignore_tags: Annotated[
        str,
        Parameter(
            name=("--ignore-tags",),
            help="Photos with any of these substrings in their tags are skipped (comma-separated)",
        ),
    ] = DEFAULT_IGNORE_TAGS,
    cores: Annotated[
        int | None,
        Parameter(
            name=("--cores",),
            help="Number of CPU cores for face_recognition, 0 for all (env: FACE_TAGGER_CORES)",
        ),
    ] = None,
    recognizer: Annotated[
        str,
        Parameter(
            name=("--recognizer",),
            help="face_recognition executable name or path",
        ),
    ] = DEFAULT_RECOGNIZER,
    work_dir: Annotated[
        Path | None,
        Parameter(
            name=("--work-dir",),
            help="Folder receiving a fresh run subfolder for exports and recognizer output",
        ),
    ] = None,
    jpeg_dimensions: Annotated[
        int,
        Parameter(
            name=("--jpeg-dimensions",),
            help="Max dimension in pixels of the JPEGs handed to face_recognition",
        ),
    ] = DEFAULT_DIMENSIONS,
    jpeg_quality: Annotated[
        int,
        Parameter(
            name=("--jpeg-quality",),
            help="JPEG quality (1-100) of the exported images",
        ),
    ] = DEFAULT_JPEG_QUALITY,
    backup_xmp: Annotated[
        bool,
        Parameter(
            name=("--backup-xmp",),
            negative="--no-backup-xmp",
            help="Create an ExifTool backup (_original) before overwriting metadata",
        ),
    ] = True,
    use_sidecar: Annotated[
        bool,
        Parameter(
            name=("--write-sidecar",),
            negative="--embed-in-photo",
            help="Write tags to XMP sidecars (default) instead of embedding in the image",
        ),
    ] = True,
    file_log_level: Annotated[
        LogLevel,
        Parameter(
            name="--file-log-level",
            help="Log level for file (use 'OFF' to disable)",
        ),
    ] = "DEBUG",
    log_folder: Annotated[
        Path,
        Parameter(
            name=("--log-folder",),
            help="Folder where log files are stored",
        ),
    ] = Path("logs"),
    console_log_level: Annotated[
        LogLevel,
        Parameter(
            name="--console-log-level",
            help="Log level for console (use 'OFF' to disable)",
        ),
    ] = "INFO",
) -> None:
    """
    Recognize known faces in photos and tag each photo with the people found.

    Inputs:
    - One or more --input/-i paths (files and/or directories; repeatable).
    - Directories use --ext (add --recursive for subfolders).

    Behavior:
    - Exports every photo (RAW supported) as a JPEG into one working folder.
    - Runs face_recognition against --known-faces; exported JPEGs are deleted afterwards,
        the result file facerecognition.txt is kept in the working folder.
    - Unrecognized faces get --unknown-tag. Photos already tagged with any
        --ignore-tags substring are left untouched.

    Exit status: returns 1 if face_recognition is missing, inputs are invalid,
    recognition fails or any photo could not be tagged.

    Examples:
        face-tagger -i ./photos --known-faces ~/faces
        face-tagger -i ./photos --ext cr3,jpg -r --ignore-tags private,skip --cores 4

    """
    setup_logging(
        file_log_level=file_log_level,
        console_log_level=console_log_level,
        log_folder=log_folder,
    )
    logger.info(
        "starting_face_tagger",
        inputs=[str(p) for p in (inputs or [])],
        extensions=image_extensions,
        recursive=recursive,
        known_faces=str(known_faces),
        unknown_tag=unknown_tag,
        ignore_tags=ignore_tags,
        cores=cores,
        recognizer=recognizer,
        use_sidecar=use_sidecar,
    )

    try:
        overrides = {"nr_cores": cores} if cores is not None else {}
        preferences = Preferences(
            unknown_tag=unknown_tag,
            ignore_tags=ignore_tags,
            known_image_path=known_faces,
            recognizer=recognizer,
            **overrides,
        )
    except ValidationError as exc:
        logger.error("invalid_preferences", errors=exc.errors(include_url=False))
        raise SystemExit(1) from exc

    config = _build_config(preferences)
    if not recognizer_available(config):
        logger.error("recognizer_not_found", executable=config.recognizer)
        raise SystemExit(1)

    ext_set = _parse_extensions(image_extensions)
    if not inputs or not ext_set:
        logger.error("no_inputs_provided", hint="Pass one or more --input/-i paths")
        raise SystemExit(1)

    image_files = _apply_skip_file(
        _resolve_image_files(inputs, ext_set, recursive=recursive),
        skip_from,
    )
    if not image_files:
        logger.warning("no_image_files_found", inputs=[str(p) for p in inputs])
        return
    logger.info("image_files_discovered", count=len(image_files))

    # Exports always go into a new folder owned by this run.
    if work_dir is not None:
        work_dir.mkdir(parents=True, exist_ok=True)
    export_dir = Path(tempfile.mkdtemp(prefix="face_tagger-", dir=work_dir))
    exports = export_images(
        image_files,
        export_dir,
        max_size=jpeg_dimensions,
        quality=jpeg_quality,
        on_progress=lambda number, total: log_status(export_status(number, total)),
    )
    catalog = XmpCatalog(use_sidecar=use_sidecar, backup=backup_xmp)
    report = run_pipeline(exports, config, catalog, announce_exports=False)

    logger.info(
        "processing_summary",
        total_files=len(image_files),
        exported=len(exports),
        tagged=len(report.tagged),
        ignored=len(report.ignored),
        unmatched=len(report.unmatched),
        failed=len(report.failed),
        tags=sorted(catalog.known_tags),
        status=report.status.value,
    )
    if not report.ok or len(exports) < len(image_files):
        raise SystemExit(1)


if __name__ == "__main__":
    app()
