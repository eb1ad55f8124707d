"""Tests for preference validation and mapping to the pipeline configuration."""

import importlib
from collections.abc import Iterator
from pathlib import Path

import pytest
from pydantic import ValidationError

import face_tagger.config as c
from face_tagger.config import ALL_CORES, Preferences, parse_ignore_tags


def test_zero_cores_means_all() -> None:
    """The recognizer expects -1 where preferences use 0."""
    config = Preferences(nr_cores=0, known_image_path=Path("/faces")).to_pipeline_config()
    assert config.core_count == ALL_CORES


def test_positive_cores_pass_through() -> None:
    config = Preferences(nr_cores=4, known_image_path=Path("/faces")).to_pipeline_config()
    assert config.core_count == 4  # noqa: PLR2004


@pytest.mark.parametrize("cores", [-1, 65])
def test_core_count_out_of_range_is_rejected(cores: int) -> None:
    with pytest.raises(ValidationError):
        Preferences(nr_cores=cores)


def test_ignore_tags_are_split_and_trimmed() -> None:
    """Blank entries are dropped; substrings are kept literally."""
    assert parse_ignore_tags("private, skip ,,a.*") == frozenset({"private", "skip", "a.*"})
    assert parse_ignore_tags("") == frozenset()


def test_known_image_path_is_expanded(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    config = Preferences(known_image_path=Path("~/faces")).to_pipeline_config()
    assert config.known_faces_path == tmp_path / "faces"


def test_preferences_map_unknown_tag_and_recognizer() -> None:
    config = Preferences(
        unknown_tag="stranger",
        ignore_tags="skip",
        recognizer="/opt/bin/face_recognition",
        known_image_path=Path("/faces"),
    ).to_pipeline_config()

    assert config.unknown_tag_name == "stranger"
    assert config.ignore_substrings == frozenset({"skip"})
    assert config.recognizer == "/opt/bin/face_recognition"
    assert config.output_filename == "facerecognition.txt"


def test_empty_unknown_tag_is_rejected() -> None:
    with pytest.raises(ValidationError):
        Preferences(unknown_tag="")


@pytest.fixture
def reload_config(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Restore the module defaults after a test reloads it under a patched environment."""
    yield
    monkeypatch.delenv("FACE_TAGGER_CORES", raising=False)
    importlib.reload(c)


def test_bad_cores_env_fails_on_validation_not_import(
    monkeypatch: pytest.MonkeyPatch,
    reload_config: None,  # noqa: ARG001
) -> None:
    monkeypatch.setenv("FACE_TAGGER_CORES", "lots")
    reloaded = importlib.reload(c)

    with pytest.raises(ValidationError):
        reloaded.Preferences()


def test_cores_env_sets_the_default(
    monkeypatch: pytest.MonkeyPatch,
    reload_config: None,  # noqa: ARG001
) -> None:
    monkeypatch.setenv("FACE_TAGGER_CORES", "3")
    reloaded = importlib.reload(c)

    assert reloaded.Preferences().nr_cores == 3  # noqa: PLR2004
