"""Controller: Dünne Orchestrierung um Resolver, Apply und Job-Registry.

Ein Reconcile-Durchlauf lädt das Objekt, pflegt den Finalizer, löst den
aktiven Patch auf, wendet ihn an und synchronisiert danach die Cron-Jobs
des Objekts (erst alle entfernen, dann alle neu anlegen). Ausgelöste
Jobs landen in ``run_scheduled`` und laden das Objekt selbst neu.

Speicher, Event-Aufzeichnung und Uhr sind externe Kollaborateure und
werden nur über die Protokolle unten angesprochen.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime
from typing import Protocol, runtime_checkable

from cronpatch.apply import build_target, decide
from cronpatch.config import CronPatchConfig
from cronpatch.cron.registry import JobRegistry
from cronpatch.cron.resolver import resolve
from cronpatch.errors import InvalidScheduleError, ResourceNotFoundError, UnknownPatchError
from cronpatch.models import (
    Action,
    ActionKind,
    CronResource,
    EventReason,
    ResolutionState,
    ResourceKey,
    Target,
    ensure_aware,
    utc_now,
)
from cronpatch.utils.logging import bind_context, clear_context, get_logger

log = get_logger(__name__)

# Liefert den aktuellen Zeitpunkt (injizierbar für Tests)
Clock = Callable[[], datetime]


# ============================================================================
# Kollaborateure
# ============================================================================


@runtime_checkable
class ResourceStore(Protocol):
    """Zugriff auf verwaltete Objekte und ihre Targets.

    Alle Methoden dürfen StoreError werfen; fehlende Objekte melden
    ResourceNotFoundError.
    """

    def get_resource(self, key: ResourceKey) -> CronResource:
        """Lädt das verwaltete Objekt."""
        ...

    def update_resource(self, resource: CronResource) -> None:
        """Speichert Status und Finalizer des Objekts."""
        ...

    def get_target(self, key: ResourceKey) -> Target:
        """Lädt das Live-Target."""
        ...

    def create_target(self, target: Target) -> None:
        """Legt das Target an."""
        ...

    def update_target(self, target: Target) -> None:
        """Überschreibt die Spec des Targets."""
        ...


@runtime_checkable
class EventRecorder(Protocol):
    """Nimmt menschenlesbare Events zu einem Objekt auf."""

    def record(self, key: ResourceKey, reason: EventReason, message: str) -> None:
        ...


# ============================================================================
# Controller
# ============================================================================


class Controller:
    """Orchestriert Reconcile-Durchläufe und ausgelöste Cron-Jobs.

    Durchläufe und Jobs für dasselbe Objekt werden über einen Lock pro
    Objekt serialisiert, damit Lesen und Schreiben des Auflösungszustands
    nicht verschränkt werden.
    """

    def __init__(
        self,
        store: ResourceStore,
        recorder: EventRecorder,
        registry: JobRegistry | None = None,
        config: CronPatchConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._config = config or CronPatchConfig()
        self.store = store
        self.recorder = recorder
        self.registry = registry or JobRegistry(self._config.scheduler)
        self._clock = clock or utc_now
        self._locks: dict[ResourceKey, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def start(self) -> None:
        self.registry.start()

    def stop(self) -> None:
        self.registry.stop()

    def _now(self) -> datetime:
        return ensure_aware(self._clock())

    def _lock_for(self, key: ResourceKey) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    # ========================================================================
    # Reconcile
    # ========================================================================

    def reconcile(self, key: ResourceKey) -> Action | None:
        """Ein Reconcile-Durchlauf für ``key``.

        Returns:
            Die ausgeführte Aktion, oder None wenn das Objekt fehlt oder
            gerade gelöscht wird.

        Raises:
            StoreError: Transiente Speicherfehler (Retry durch den Aufrufer).
            InvalidScheduleError: Ungültiger Schedule im Objekt.
            ScheduleSearchExhaustedError: Pathologischer Schedule.
        """
        with self._lock_for(key):
            bind_context(resource=str(key))
            try:
                return self._reconcile(key)
            finally:
                clear_context()

    def _reconcile(self, key: ResourceKey) -> Action | None:
        finalizer = self._config.controller.finalizer

        try:
            resource = self.store.get_resource(key)
        except ResourceNotFoundError:
            log.debug("resource_not_found")
            self.registry.clear(key)
            return None

        if resource.is_deleting:
            if finalizer in resource.finalizers:
                log.info("clearing_schedules")
                self.clear_schedules(resource)
                resource.finalizers = [f for f in resource.finalizers if f != finalizer]
                self.store.update_resource(resource)
            return None

        if finalizer not in resource.finalizers:
            log.info("finalizer_added", finalizer=finalizer)
            resource.finalizers.append(finalizer)
            self.store.update_resource(resource)

        now = self._now()
        try:
            resolved = resolve(
                resource.scheduled_patches,
                resource.status,
                now,
                max_tries=self._config.resolver.max_schedule_tries,
            )
            action = self.apply_patch(resource, resolved.name, now)
        finally:
            # Jobs folgen immer der aktuellen Spec, auch wenn Auflösen oder Apply scheitert
            self.update_schedules(resource)
        return action

    # ========================================================================
    # Apply
    # ========================================================================

    def apply_patch(self, resource: CronResource, patch_name: str, now: datetime) -> Action:
        """Erzeugt oder aktualisiert das Target für ``patch_name``.

        Jede Nicht-Skip-Aktion persistiert den neuen Anchor und den
        aufgelösten Patch-Namen. Der Anchor läuft nie rückwärts.

        Raises:
            UnknownPatchError: Wenn ``patch_name`` nicht deklariert ist.
            StoreError: Bei Speicherfehlern beim Anlegen oder Aktualisieren.
        """
        apply_config = self._config.apply
        desired = build_target(resource, patch_name)

        try:
            current: Target | None = self.store.get_target(resource.key)
        except ResourceNotFoundError:
            current = None

        action = decide(
            current,
            desired,
            apply_config.skip_annotation,
            skip_advances_anchor=apply_config.skip_advances_anchor,
        )

        if action.kind is ActionKind.CREATE:
            self.store.create_target(desired)
            reason, message = EventReason.CREATED, f"Created target {desired.name}"
        elif action.kind is ActionKind.UPDATE:
            self.store.update_target(desired)
            reason, message = EventReason.UPDATED, f"Updated target {desired.name}"
        else:
            reason, message = EventReason.SKIPPED, f"Skipped target {desired.name} ({action.reason})"
        if patch_name:
            message = f"{message} with {patch_name}"
        self.recorder.record(resource.key, reason, message)
        log.info("target_applied", action=str(action.kind), reason=action.reason, patch=patch_name)

        if action.advances_anchor:
            previous = resource.status.last_cron_timestamp
            anchor = now if previous is None else max(ensure_aware(previous), now)
            resource.status = ResolutionState(
                last_cron_timestamp=anchor,
                last_scheduled_patch_name=patch_name,
            )
            self.store.update_resource(resource)

        return action

    # ========================================================================
    # Schedules
    # ========================================================================

    def update_schedules(self, resource: CronResource) -> None:
        """Ersetzt alle Cron-Jobs des Objekts durch die aktuell deklarierten.

        Raises:
            InvalidScheduleError: Der Job-Satz des Objekts bleibt dann leer.
        """
        key = resource.key
        self.registry.clear(key)
        try:
            for scheduled in resource.scheduled_patches:
                self.registry.add(
                    key,
                    scheduled.name,
                    scheduled.schedule,
                    self.run_scheduled,
                    timezone=scheduled.timezone,
                )
        except InvalidScheduleError:
            self.registry.clear(key)
            raise

        names = ",".join(p.name for p in resource.scheduled_patches)
        self.recorder.record(key, EventReason.SCHEDULED, f"Scheduled: {names}")

    def clear_schedules(self, resource: CronResource) -> None:
        """Entfernt alle Cron-Jobs des Objekts."""
        self.registry.clear(resource.key)
        self.recorder.record(resource.key, EventReason.UNSCHEDULED, "Unscheduled")

    # ========================================================================
    # Ausgelöste Jobs
    # ========================================================================

    def run_scheduled(self, key: ResourceKey, patch_name: str) -> None:
        """Callback eines ausgelösten Cron-Jobs.

        Lädt das Objekt neu statt sich auf Zustand von der Registrierung
        zu verlassen. Verschwundene Objekte verlieren ihre Jobs; ein
        inzwischen gelöschter Patch ist ein No-op bis zum nächsten Reconcile.
        """
        with self._lock_for(key):
            bind_context(resource=str(key), patch=patch_name)
            try:
                self._run_scheduled(key, patch_name)
            except Exception:
                # Oberstes Frame im Scheduler-Thread
                log.exception("scheduled_patch_failed")
            finally:
                clear_context()

    def _run_scheduled(self, key: ResourceKey, patch_name: str) -> None:
        log.info("scheduled_patch_fired")
        try:
            resource = self.store.get_resource(key)
        except ResourceNotFoundError:
            log.info("resource_gone_clearing_jobs")
            self.registry.clear(key)
            return

        if resource.is_deleting:
            return

        try:
            self.apply_patch(resource, patch_name, self._now())
        except UnknownPatchError:
            log.warning("scheduled_patch_unknown")
