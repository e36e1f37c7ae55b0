"""Tests for maintenance configuration."""

from pathlib import Path

import pytest

from task_keeper.errors import ValidationError
from task_keeper.maintenance.config import (
    MaintenanceConfig,
    MaintenanceSettings,
    load_maintenance_settings,
)


def test_defaults() -> None:
    config = MaintenanceConfig()

    assert config.enabled is True
    assert config.triggers.completion_threshold == 100
    assert config.operations.orphaned_subtasks.action == "reassign"
    assert config.operations.quality.action == "flag"
    assert config.operations.duplicate_detection.similarity_threshold == 0.85
    assert config.operations.duplicate_detection.max_tasks_to_compare == 50


def test_project_override_is_deep_merged() -> None:
    settings = MaintenanceSettings(
        projects={"p1": {"operations": {"quality": {"action": "fix", "min_title_length": 3}}}}
    )

    config = settings.for_project("p1")

    assert config.operations.quality.action == "fix"
    assert config.operations.quality.min_title_length == 3
    assert config.operations.quality.min_description_length == 10
    assert settings.for_project("other").operations.quality.action == "flag"


def test_invalid_override_raises() -> None:
    settings = MaintenanceSettings(projects={"p1": {"operations": {"quality": {"action": "nuke"}}}})

    with pytest.raises(ValidationError):
        settings.for_project("p1")


@pytest.mark.parametrize(
    "quality",
    [{"min_title_length": 101}, {"min_description_length": 1001}],
)
def test_minimum_lengths_cannot_exceed_field_limits(quality: dict) -> None:
    """Test a minimum that fixed text could never reach is refused."""
    settings = MaintenanceSettings(projects={"p1": {"operations": {"quality": quality}}})

    with pytest.raises(ValidationError):
        settings.for_project("p1")


def test_with_stages_toggles_stages() -> None:
    config = MaintenanceConfig().with_stages({"duplicates": False, "renumber": False})

    assert config.operations.duplicate_detection.enabled is False
    assert config.operations.renumber.enabled is False
    assert config.operations.quality.enabled is True


def test_with_stages_rejects_unknown_stage() -> None:
    with pytest.raises(ValidationError, match="Unknown cleanup operations"):
        MaintenanceConfig().with_stages({"vacuum": True})


def test_load_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "maintenance.yaml"
    path.write_text(
        """
defaults:
  operations:
    orphaned_subtasks:
      action: convert
projects:
  p1:
    enabled: false
"""
    )

    settings = load_maintenance_settings(path)

    assert settings.defaults.operations.orphaned_subtasks.action == "convert"
    assert settings.for_project("p1").enabled is False
    assert settings.for_project("p1").operations.orphaned_subtasks.action == "convert"


def test_load_missing_file_uses_defaults(tmp_path: Path) -> None:
    assert load_maintenance_settings(tmp_path / "absent.yaml") == MaintenanceSettings()
    assert load_maintenance_settings(None) == MaintenanceSettings()


def test_load_malformed_yaml_raises(tmp_path: Path) -> None:
    path = tmp_path / "maintenance.yaml"
    path.write_text("defaults: [unclosed")

    with pytest.raises(ValidationError):
        load_maintenance_settings(path)


def test_load_unknown_key_raises(tmp_path: Path) -> None:
    path = tmp_path / "maintenance.yaml"
    path.write_text("defaults:\n  triggers:\n    on_creation: true\n")

    with pytest.raises(ValidationError):
        load_maintenance_settings(path)
