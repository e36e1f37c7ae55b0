"""Maintenance configuration: global defaults with per-project overrides."""

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from task_keeper.errors import ValidationError

logger = logging.getLogger(__name__)

# Keys accepted by perform_cleanup(operations=...) and the stage they toggle
STAGE_FIELDS = {
    "metadata": "metadata_consistency",
    "orphans": "orphaned_subtasks",
    "quality": "quality",
    "duplicates": "duplicate_detection",
    "renumber": "renumber",
}


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class TriggerConfig(_Section):
    """When a store event starts a maintenance pass."""

    on_task_completion: bool = True
    completion_threshold: int = Field(default=100, ge=0, le=100)


class MetadataConsistencyConfig(_Section):
    enabled: bool = True
    ensure_completed_timestamp: bool = True
    validate_status_progress: bool = True
    validate_assigned_fields: bool = True


class OrphanedSubtasksConfig(_Section):
    enabled: bool = True
    action: Literal["reassign", "delete", "convert"] = "reassign"
    reassign_to_task_id: int | None = Field(default=None, gt=0)


class QualityConfig(_Section):
    enabled: bool = True
    min_title_length: int = Field(default=5, ge=0, le=100)
    min_description_length: int = Field(default=10, ge=0, le=1000)
    require_priority: bool = True
    action: Literal["flag", "fix", "delete"] = "flag"


class DuplicateDetectionConfig(_Section):
    enabled: bool = True
    use_oracle: bool = True
    similarity_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    consider_title: bool = True
    consider_description: bool = True
    ignore_case: bool = True
    ignore_whitespace: bool = True
    max_tasks_to_compare: int = Field(default=50, ge=0)


class RenumberConfig(_Section):
    enabled: bool = True
    only_after_deletion: bool = False


class CleanupLoggingConfig(_Section):
    log_actions: bool = True
    detailed: bool = True


class OperationsConfig(_Section):
    """Pipeline stages in execution order."""

    metadata_consistency: MetadataConsistencyConfig = Field(
        default_factory=MetadataConsistencyConfig
    )
    orphaned_subtasks: OrphanedSubtasksConfig = Field(default_factory=OrphanedSubtasksConfig)
    quality: QualityConfig = Field(default_factory=QualityConfig)
    duplicate_detection: DuplicateDetectionConfig = Field(default_factory=DuplicateDetectionConfig)
    renumber: RenumberConfig = Field(default_factory=RenumberConfig)


class MaintenanceConfig(_Section):
    """Effective maintenance configuration for one project."""

    enabled: bool = True
    triggers: TriggerConfig = Field(default_factory=TriggerConfig)
    operations: OperationsConfig = Field(default_factory=OperationsConfig)
    logging: CleanupLoggingConfig = Field(default_factory=CleanupLoggingConfig)

    def with_stages(self, toggles: Mapping[str, bool]) -> "MaintenanceConfig":
        """Copy with individual stages switched on or off.

        Args:
            toggles: Stage name (metadata, orphans, quality, duplicates, renumber) to enabled flag

        Raises:
            ValidationError: If a stage name is unknown
        """
        unknown = sorted(set(toggles) - set(STAGE_FIELDS))
        if unknown:
            raise ValidationError(
                f"Unknown cleanup operations: {', '.join(unknown)}",
                {"field": "operations", "value": unknown},
            )
        overrides = {
            STAGE_FIELDS[name]: {"enabled": bool(enabled)} for name, enabled in toggles.items()
        }
        return _validate_config(_deep_merge(self.model_dump(), {"operations": overrides}))


class MaintenanceSettings(BaseModel):
    """Global defaults plus partial overrides keyed by project id."""

    defaults: MaintenanceConfig = Field(default_factory=MaintenanceConfig)
    projects: dict[str, dict[str, Any]] = Field(default_factory=dict)

    def for_project(self, project_id: str) -> MaintenanceConfig:
        """Defaults with the project's override merged on top."""
        override = self.projects.get(project_id)
        if not override:
            return self.defaults
        return _validate_config(_deep_merge(self.defaults.model_dump(), override))


def _deep_merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _validate_config(data: dict[str, Any]) -> MaintenanceConfig:
    try:
        return MaintenanceConfig.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid maintenance configuration: {e}") from e


def load_maintenance_settings(path: Path | str | None) -> MaintenanceSettings:
    """Load maintenance settings from a YAML file.

    The file holds a ``defaults`` mapping and a ``projects`` mapping of project id
    to partial overrides. A missing path or file yields the built-in defaults.

    Raises:
        ValidationError: If the file is not valid YAML or does not match the schema
    """
    if path is None:
        return MaintenanceSettings()

    config_path = Path(path)
    if not config_path.exists():
        logger.warning(f"[MaintenanceConfig] {config_path} not found, using defaults")
        return MaintenanceSettings()

    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ValidationError(
            f"Malformed maintenance configuration {config_path}", {"path": str(config_path)}
        ) from e

    if not isinstance(data, dict):
        raise ValidationError(
            f"Maintenance configuration {config_path} must be a mapping",
            {"path": str(config_path)},
        )

    try:
        settings = MaintenanceSettings.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid maintenance configuration {config_path}: {e}", {"path": str(config_path)}
        ) from e

    # Surface bad overrides at load time rather than on the first pass
    for project_id in settings.projects:
        settings.for_project(project_id)

    logger.info(
        f"[MaintenanceConfig] Loaded {config_path} with {len(settings.projects)} project overrides"
    )
    return settings
