"""
cronpatch · Configuration system.

Loads configuration from:
  1. Defaults (defined here)
  2. A YAML file (overrides defaults)
  3. Environment variables CRONPATCH_* (overrides everything)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from cronpatch.utils.logging import get_logger, setup_logging

log = get_logger(__name__)

ENV_PREFIX = "CRONPATCH_"

# ============================================================================
# Konfigurationsmodelle
# ============================================================================


class SchedulerConfig(BaseModel):
    """Einstellungen des APScheduler-Backends der Job-Registry."""

    timezone: str = "UTC"
    coalesce: bool = True
    misfire_grace_seconds: int = Field(default=60, ge=1, le=3600)


class ResolverConfig(BaseModel):
    """Einstellungen des Patch-Resolvers."""

    max_schedule_tries: int = Field(default=1_000_000, ge=1)
    """Obergrenze der Schritte beim Vorspulen eines Schedules vom Anchor."""


class ApplyConfig(BaseModel):
    """Einstellungen der Apply-Entscheidung."""

    skip_annotation: str = "cronpatch.io/skip"
    """Annotation am Target, die jede Änderung unterdrückt."""

    skip_advances_anchor: bool = False
    """Ob ein Skip wegen der Annotation den Anchor-Zeitstempel weiterschiebt."""


class ControllerConfig(BaseModel):
    """Einstellungen der Orchestrierung."""

    finalizer: str = "cronpatch.io/finalizer"


class LoggingConfig(BaseModel):
    """Logging-Konfiguration."""

    level: str = "INFO"
    json_logs: bool = False
    console: bool = True
    log_dir: Path | None = None

    @field_validator("level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


class CronPatchConfig(BaseModel):
    """Vollständige cronpatch-Konfiguration."""

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    resolver: ResolverConfig = Field(default_factory=ResolverConfig)
    apply: ApplyConfig = Field(default_factory=ApplyConfig)
    controller: ControllerConfig = Field(default_factory=ControllerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# ============================================================================
# Laden
# ============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Tiefes Mergen von zwei Dicts. Override gewinnt bei Konflikten."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Wendet CRONPATCH_* Umgebungsvariablen an.

    Konvention: CRONPATCH_SECTION_KEY → data["section"]["key"]
    Beispiel: CRONPATCH_APPLY_SKIP_ADVANCES_ANCHOR → data["apply"]["skip_advances_anchor"]
    """
    sections = set(CronPatchConfig.model_fields)
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        parts = key[len(ENV_PREFIX):].lower().split("_", 1)
        if len(parts) != 2 or parts[0] not in sections:
            log.debug("env_override_ignored", variable=key)
            continue
        section, leaf = parts
        node = data.setdefault(section, {})
        if isinstance(node, dict):
            node[leaf] = value
    return data


def load_config(config_path: Path | None = None) -> CronPatchConfig:
    """Lädt die Konfiguration.

    Reihenfolge (spätere überschreiben frühere):
      1. Defaults (in den Pydantic-Modellen)
      2. YAML-Datei (wenn vorhanden)
      3. CRONPATCH_* Umgebungsvariablen

    Args:
        config_path: Pfad zur YAML-Datei. None = nur Defaults + Umgebung.

    Returns:
        Vollständig validierte CronPatchConfig.
    """
    data: dict[str, Any] = {}

    if config_path is not None and config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                file_data = yaml.safe_load(f) or {}
            if isinstance(file_data, dict):
                data = _deep_merge(data, file_data)
        except yaml.YAMLError as exc:
            log.warning("config_yaml_ignored", path=str(config_path), error=str(exc))

    data = _apply_env_overrides(data)

    return CronPatchConfig(**data)


def configure_logging(config: CronPatchConfig) -> None:
    """Initialisiert das Logging aus dem ``logging``-Abschnitt der Konfiguration."""
    setup_logging(**config.logging.model_dump())
