from pathlib import Path

import pytest

from config import ConfigurationManager, get_config
from src.utils.exceptions import ConfigurationError


def test_dotted_lookup_with_default():
    assert get_config("classifier.min_score") == 0.5
    assert get_config("no.such.key", "fallback") == "fallback"


def test_paths_are_resolved_next_to_the_settings_file():
    templates = Path(get_config("paths.templates"))

    assert templates.is_absolute()
    assert templates.name == "templates.yaml"
    assert templates.exists()


def test_out_of_range_override_is_rejected_and_rolled_back():
    config = ConfigurationManager()

    with pytest.raises(ConfigurationError) as excinfo:
        config.override({"postprocessing": {"confidence_threshold": 1.5}})

    assert excinfo.value.details["key"] == "postprocessing.confidence_threshold"
    assert get_config("postprocessing.confidence_threshold") == 0.5


def test_inverted_aspect_band_is_rejected():
    with pytest.raises(ConfigurationError):
        ConfigurationManager().override({"input": {"aspect_ratio": {"min": 2.0}}})

    assert get_config("input.aspect_ratio.min") == 1.2
