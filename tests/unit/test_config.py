"""Configuration loading tests for the marketplace service."""

from __future__ import annotations

import os

import pytest
import yaml
from pydantic import ValidationError

from marketplace_service.config import (
    REDACTION_MARKER,
    Settings,
    clear_settings_cache,
    get_safe_config,
    get_settings,
    load_settings,
)
from tests.helpers import write_config


@pytest.mark.unit
def test_config_loads_from_yaml(tmp_path):
    """Valid config loads without error."""
    config_path = write_config(tmp_path)
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    settings = get_settings()

    assert isinstance(settings, Settings)
    assert settings.service.name == "marketplace"
    assert settings.server.port == 5000
    assert settings.auth.algorithm == "HS256"
    assert settings.storage.submission_max_files == 3
    assert settings.marketplace.max_applications_per_task == 3
    assert "BRONZE" in settings.marketplace.qualifying_badges

    os.environ.pop("CONFIG_PATH", None)


@pytest.mark.unit
def test_config_rejects_extra_fields(tmp_path):
    """Extra keys raise ValidationError (extra='forbid')."""
    config_path = write_config(tmp_path)
    raw = yaml.safe_load(config_path.read_text())
    raw["service"]["unknown_field"] = True
    config_path.write_text(yaml.safe_dump(raw))

    with pytest.raises(ValidationError):
        load_settings(config_path)


@pytest.mark.unit
def test_config_rejects_missing_section(tmp_path):
    """There are no defaults: a missing section fails validation."""
    config_path = write_config(tmp_path)
    raw = yaml.safe_load(config_path.read_text())
    del raw["marketplace"]
    config_path.write_text(yaml.safe_dump(raw))

    with pytest.raises(ValidationError):
        load_settings(config_path)


@pytest.mark.unit
def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_settings(tmp_path / "nope.yaml")


@pytest.mark.unit
def test_safe_config_redacts_secret(tmp_path):
    """The JWT secret never appears in the safe config dump."""
    os.environ["CONFIG_PATH"] = str(write_config(tmp_path))
    clear_settings_cache()

    safe = get_safe_config()

    assert safe["auth"]["jwt_secret"] == REDACTION_MARKER
    assert safe["auth"]["algorithm"] == "HS256"

    os.environ.pop("CONFIG_PATH", None)
