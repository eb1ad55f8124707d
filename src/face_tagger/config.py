"""User preferences and the validated per-run pipeline configuration."""

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


MAX_CORES = 64
ALL_CORES = -1
UNKNOWN_MARKER = "unknown_person"
OUTPUT_FILENAME = "facerecognition.txt"

# Configuration defaults
DEFAULT_UNKNOWN_TAG = os.getenv("FACE_TAGGER_UNKNOWN_TAG", UNKNOWN_MARKER)
DEFAULT_IGNORE_TAGS = os.getenv("FACE_TAGGER_IGNORE_TAGS", "")
# Validated by Preferences, so a bad value fails when settings are built.
DEFAULT_CORES = os.getenv("FACE_TAGGER_CORES", "0")
DEFAULT_KNOWN_FACES = Path(
    os.getenv("FACE_TAGGER_KNOWN_FACES", "~/.config/face_tagger/known_faces"),
)
DEFAULT_RECOGNIZER = os.getenv("FACE_RECOGNITION_BIN", "face_recognition")


def parse_ignore_tags(ignore_tags: str) -> frozenset[str]:
    """
    Split a comma-separated ignore string into literal substrings.

    Examples:
        >>> sorted(parse_ignore_tags("private, skip,,"))
        ['private', 'skip']
        >>> parse_ignore_tags("")
        frozenset()

    """
    return frozenset(part.strip() for part in ignore_tags.split(",") if part.strip())


class PipelineConfig(BaseModel):
    """Everything one pipeline run needs, built once and passed through explicitly."""

    model_config = ConfigDict(frozen=True)

    known_faces_path: Path
    core_count: int = Field(default=ALL_CORES, ge=ALL_CORES, le=MAX_CORES)
    ignore_substrings: frozenset[str] = frozenset()
    unknown_tag_name: str = UNKNOWN_MARKER
    recognizer: str = DEFAULT_RECOGNIZER
    output_filename: str = OUTPUT_FILENAME


class Preferences(BaseModel):
    """
    Raw preference values as a user sets them.

    `nr_cores` uses 0 for "all cores"; the recognizer itself expects -1 for that.
    """

    unknown_tag: str = Field(default=DEFAULT_UNKNOWN_TAG, min_length=1)
    ignore_tags: str = DEFAULT_IGNORE_TAGS
    nr_cores: int = Field(default=DEFAULT_CORES, ge=0, le=MAX_CORES, validate_default=True)
    known_image_path: Path = DEFAULT_KNOWN_FACES
    recognizer: str = DEFAULT_RECOGNIZER

    def to_pipeline_config(self) -> PipelineConfig:
        """Translate preferences into the recognizer-facing configuration."""
        return PipelineConfig(
            known_faces_path=self.known_image_path.expanduser(),
            core_count=self.nr_cores if self.nr_cores >= 1 else ALL_CORES,
            ignore_substrings=parse_ignore_tags(self.ignore_tags),
            unknown_tag_name=self.unknown_tag,
            recognizer=self.recognizer,
        )
