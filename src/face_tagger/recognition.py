"""
Run the external face_recognition tool and turn its output into labels.

The tool prints one line per detected face, `<path>,<label>`, where the label is the
reference image name (without extension) that matched, `unknown_person` when no
reference matched, or `no_persons_found` when the image had no face at all.
"""

import re
import shutil
import subprocess
import time
from pathlib import Path
from typing import NamedTuple

from loguru import logger

from face_tagger.config import UNKNOWN_MARKER, PipelineConfig
from face_tagger.errors import OutputUnreadableError, RecognizerProcessError


NO_FACES_MARKER = "no_persons_found"

_RESULT_LINE = re.compile(r"^(.+),(.+)$")
_TRAILING_DIGITS = re.compile(r"[0-9]+\Z")


class RecognitionRecord(NamedTuple):
    """One detected face: the file it was found in and the raw recognizer label."""

    file_path: str
    raw_label: str


def recognizer_available(config: PipelineConfig) -> bool:
    """Return True when the recognizer executable can be found on PATH."""
    return shutil.which(config.recognizer) is not None


def build_command(config: PipelineConfig, export_dir: Path) -> list[str]:
    """
    Build the recognizer argument vector.

    Examples:
        >>> cfg = PipelineConfig(known_faces_path=Path("/faces"), core_count=4)
        >>> build_command(cfg, Path("/tmp/export"))
        ['face_recognition', '--cpus', '4', '/faces', '/tmp/export']

    """
    return [
        config.recognizer,
        "--cpus",
        str(config.core_count),
        str(config.known_faces_path),
        str(export_dir),
    ]


def run_recognizer(config: PipelineConfig, export_dir: Path, output_path: Path) -> Path:
    """
    Run the recognizer over `export_dir` and capture its stdout in `output_path`.

    Blocks until the tool exits; there is no timeout.

    Args:
        config: Pipeline configuration (executable, cores, known faces)
        export_dir: Directory holding the exported images to recognize
        output_path: File receiving the recognizer's result lines

    Returns:
        The output path, for chaining.

    Raises:
        RecognizerProcessError: The process could not be started or exited non-zero.

    """
    command = build_command(config, export_dir)
    logger.debug("running_recognizer", command=command, output=str(output_path))

    _t0 = time.perf_counter()
    try:
        with output_path.open("wb") as out:
            completed = subprocess.run(  # noqa: S603
                command,
                stdout=out,
                stderr=subprocess.PIPE,
                check=False,
            )
    except OSError as exc:
        msg = f"Could not run {config.recognizer}: {exc}"
        raise RecognizerProcessError(msg) from exc

    stderr = completed.stderr.decode("utf-8", errors="replace") if completed.stderr else ""
    logger.info(
        "recognizer_finished",
        returncode=completed.returncode,
        seconds=round(time.perf_counter() - _t0, 3),
    )
    if stderr.strip():
        logger.debug("recognizer_stderr", stderr=stderr.strip())

    if completed.returncode != 0:
        msg = f"{config.recognizer} exited with status {completed.returncode}"
        raise RecognizerProcessError(msg, returncode=completed.returncode, stderr=stderr)

    return output_path


def parse_line(line: str) -> RecognitionRecord | None:
    """
    Parse one output line into a record, or None when it does not look like a result.

    The path is greedy, so only the text after the last comma becomes the label.

    Examples:
        >>> parse_line("/tmp/a,b.jpg,Alice1\\n")
        RecognitionRecord(file_path='/tmp/a,b.jpg', raw_label='Alice1')
        >>> parse_line("WARNING: No faces found in /tmp/x.jpg. Ignoring file.") is None
        True

    """
    match = _RESULT_LINE.match(line.rstrip("\r\n"))
    if match is None:
        return None
    return RecognitionRecord(file_path=match.group(1), raw_label=match.group(2))


def read_results(output_path: Path) -> dict[str, list[str]]:
    """
    Read the recognizer output artifact into `file path -> [raw labels]`.

    One label is kept per detected face, in output order, duplicates included.

    Raises:
        OutputUnreadableError: The artifact is missing or cannot be read.

    """
    results: dict[str, list[str]] = {}
    skipped = 0
    try:
        with output_path.open(encoding="utf-8", errors="replace") as fh:
            for line in fh:
                record = parse_line(line)
                if record is None:
                    if line.strip():
                        logger.debug("malformed_result_line", line=line.rstrip())
                    skipped += 1
                    continue
                results.setdefault(record.file_path, []).append(record.raw_label)
    except OSError as exc:
        msg = f"Cannot read recognizer output {output_path}: {exc}"
        raise OutputUnreadableError(msg) from exc

    logger.debug(
        "recognizer_output_parsed",
        files=len(results),
        faces=sum(len(labels) for labels in results.values()),
        skipped_lines=skipped,
    )
    return results


def normalize_label(raw_label: str, unknown_tag_name: str) -> str:
    """
    Turn a raw recognizer label into a tag name.

    Trailing digits are stripped, so reference images `Alice1.jpg` and `Alice2.jpg`
    both become `Alice`. The unknown marker is replaced by `unknown_tag_name`.

    Examples:
        >>> normalize_label("Alice12", "unk")
        'Alice'
        >>> normalize_label("unknown_person3", "Unknown")
        'Unknown'
        >>> normalize_label("Bob", "Unknown")
        'Bob'

    """
    stripped = _TRAILING_DIGITS.sub("", raw_label)
    if stripped == UNKNOWN_MARKER:
        return unknown_tag_name
    return stripped
