"""
cronpatch · Central data models.

All Pydantic models used across modules.

Design principles:
  - Immutable (frozen) where sensible (keys, resolutions, decisions)
  - Mutable where necessary (resource status and finalizers, written back by the controller)
  - Strict validation (no invalid patch names, no duplicate schedule slots)
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator

# ============================================================================
# Hilfsfunktionen
# ============================================================================

PATCH_NAME_MAX_LENGTH = 16
_PATCH_NAME_RE = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9-]*[A-Za-z0-9])?$")


def validate_patch_name(value: str) -> str:
    """Prüft einen Patch-Namen (1-16 Zeichen, alphanumerisch mit inneren Bindestrichen).

    Raises:
        ValueError: Bei ungültigem Namen.
    """
    if len(value) > PATCH_NAME_MAX_LENGTH:
        msg = f"Patch name longer than {PATCH_NAME_MAX_LENGTH} characters: '{value}'"
        raise ValueError(msg)
    if not _PATCH_NAME_RE.match(value):
        msg = f"Patch name must be alphanumeric with inner hyphens: '{value}'"
        raise ValueError(msg)
    return value


def utc_now() -> datetime:
    """Aktuelle Zeit in UTC. Einheitlich im gesamten System."""
    return datetime.now(UTC)


def ensure_aware(value: datetime) -> datetime:
    """Naive Zeitstempel werden als UTC interpretiert."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# ============================================================================
# Enums
# ============================================================================


class ActionKind(StrEnum):
    """What the apply step does with the target object."""

    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"


class SkipReason(StrEnum):
    """Why a target was left untouched."""

    OVERRIDE_MARKER = "override-marker"
    NO_CHANGE = "no-change"


class EventReason(StrEnum):
    """Reasons of user-facing events recorded on a resource."""

    CREATED = "Created"
    UPDATED = "Updated"
    SKIPPED = "Skipped"
    SCHEDULED = "Scheduled"
    UNSCHEDULED = "Unscheduled"


# ============================================================================
# Identität
# ============================================================================


class ResourceKey(BaseModel, frozen=True):
    """(namespace, name) eines verwalteten Objekts. Top-Level-Key der Registry."""

    namespace: str
    name: str

    @classmethod
    def parse(cls, value: str) -> ResourceKey:
        """Parst ``namespace/name``."""
        namespace, sep, name = value.partition("/")
        if not sep or not namespace or not name:
            msg = f"Resource key must look like 'namespace/name', got '{value}'"
            raise ValueError(msg)
        return cls(namespace=namespace, name=name)

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


# ============================================================================
# Deklarierte Schedules
# ============================================================================


class ScheduledPatch(BaseModel, frozen=True):
    """Ein benannter, cron-gesteuerter Patch.

    ``patch`` enthält die Top-Level-Felder der Target-Spec, die ersetzt
    werden, solange dieser Patch aktiv ist. ``None`` = Template unverändert.
    """

    name: str
    schedule: str  # Cron-Expression
    timezone: str = ""  # IANA-Name, leer = UTC
    patch: dict[str, Any] | None = None

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        return validate_patch_name(value)


class TargetMetadata(BaseModel):
    """Labels und Annotations, die auf das erzeugte Target kopiert werden."""

    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class TargetTemplate(BaseModel):
    """Basis-Template des Targets (Zustand ohne aktiven Patch)."""

    metadata: TargetMetadata | None = None
    spec: dict[str, Any] = Field(default_factory=dict)


class ResolutionState(BaseModel):
    """Persistierter Auflösungszustand (Status des Objekts).

    Der Core berechnet ihn nur; gespeichert wird er vom Controller.
    """

    last_cron_timestamp: datetime | None = None
    last_scheduled_patch_name: str = ""


class CronResource(BaseModel):
    """Das verwaltete Objekt: Template, Schedules, Status."""

    namespace: str
    name: str
    template: TargetTemplate = Field(default_factory=TargetTemplate)
    scheduled_patches: list[ScheduledPatch] = Field(default_factory=list)
    status: ResolutionState = Field(default_factory=ResolutionState)
    finalizers: list[str] = Field(default_factory=list)
    deletion_timestamp: datetime | None = None

    @field_validator("scheduled_patches")
    @classmethod
    def _unique_patch_names(cls, value: list[ScheduledPatch]) -> list[ScheduledPatch]:
        seen: set[str] = set()
        for patch in value:
            if patch.name in seen:
                msg = f"Duplicate scheduled patch name: '{patch.name}'"
                raise ValueError(msg)
            seen.add(patch.name)
        return value

    @property
    def key(self) -> ResourceKey:
        return ResourceKey(namespace=self.namespace, name=self.name)

    @property
    def is_deleting(self) -> bool:
        return self.deletion_timestamp is not None

    def get_patch(self, name: str) -> ScheduledPatch | None:
        """Gibt den Patch mit diesem Namen zurück (oder None)."""
        for patch in self.scheduled_patches:
            if patch.name == name:
                return patch
        return None


class Target(BaseModel):
    """Das aus Template + Patch abgeleitete Zielobjekt."""

    namespace: str
    name: str
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    spec: dict[str, Any] = Field(default_factory=dict)
    owner: ResourceKey | None = None

    @property
    def key(self) -> ResourceKey:
        return ResourceKey(namespace=self.namespace, name=self.name)


# ============================================================================
# Ergebnisse
# ============================================================================


class ResolvedPatch(BaseModel, frozen=True):
    """Ergebnis einer Auflösung.

    ``name == ""`` bedeutet: kein Patch aktiv. ``fired_at`` ist der
    Feuerzeitpunkt, der die Auswahl ausgelöst hat (None bei Übernahme
    des vorherigen Patches).
    """

    name: str = ""
    fired_at: datetime | None = None
    carried_forward: bool = False

    @property
    def is_active(self) -> bool:
        return self.name != ""


class Action(BaseModel, frozen=True):
    """Entscheidung des Apply-Schritts für eine Reconciliation."""

    kind: ActionKind
    reason: SkipReason | None = None
    advances_anchor: bool = True
