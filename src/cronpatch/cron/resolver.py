"""Patch-Resolver: Welcher benannte Patch ist jetzt aktiv?

Statt die komplette Schedule-Historie abzuspielen, sucht der Resolver
nur ab dem letzten Anchor-Zeitstempel vorwärts:

  1. Ohne Anchor ist kein Patch aktiv (neue Objekte starten im Template-Zustand).
  2. Für jeden Schedule wird der letzte Feuerzeitpunkt in (anchor, now] gesucht.
  3. Der Schedule mit dem spätesten solchen Zeitpunkt gewinnt; bei
     Gleichstand der zuerst deklarierte.
  4. Feuert keiner, bleibt der zuletzt aufgelöste Patch aktiv, sofern
     er noch deklariert ist, sonst keiner.

Die Funktion ist rein: gleiche Eingaben, gleiches Ergebnis. Den Anchor
weiterzuschieben ist Aufgabe des Aufrufers.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from cronpatch.cron.expression import next_fire_time, parse_schedule
from cronpatch.errors import ScheduleSearchExhaustedError
from cronpatch.models import ResolutionState, ResolvedPatch, ScheduledPatch, ensure_aware
from cronpatch.utils.logging import get_logger

log = get_logger(__name__)

MAX_SCHEDULE_TRIES = 1_000_000


def latest_fire_time(
    patch: ScheduledPatch,
    anchor: datetime,
    now: datetime,
    max_tries: int = MAX_SCHEDULE_TRIES,
) -> datetime | None:
    """Letzter Feuerzeitpunkt von ``patch`` in (anchor, now].

    Raises:
        InvalidScheduleError: Bei ungültigem Schedule.
        ScheduleSearchExhaustedError: Wenn ``now`` nach ``max_tries``
            Schritten noch nicht überschritten ist.
    """
    trigger = parse_schedule(patch.schedule, patch.timezone)
    anchor = ensure_aware(anchor)
    now = ensure_aware(now)

    latest: datetime | None = None
    current = anchor
    for step in range(max_tries + 1):
        current = next_fire_time(trigger, current)
        if current is None or current > now:
            break
        latest = current
        if step == max_tries:
            raise ScheduleSearchExhaustedError(
                f"Cannot find the next schedule of '{patch.name}' within {max_tries} steps",
                details={"patch": patch.name, "schedule": patch.schedule, "tries": max_tries},
            )
    return latest


def resolve(
    patches: Sequence[ScheduledPatch],
    state: ResolutionState,
    now: datetime,
    max_tries: int = MAX_SCHEDULE_TRIES,
) -> ResolvedPatch:
    """Bestimmt den zum Zeitpunkt ``now`` aktiven Patch.

    Args:
        patches: Deklarierte Schedules in Deklarationsreihenfolge.
        state: Letzter Anchor und zuletzt aufgelöster Patch.
        now: Aktueller Zeitpunkt.
        max_tries: Obergrenze der Vorwärtsschritte pro Schedule.

    Returns:
        ResolvedPatch; ``name == ""`` wenn kein Patch aktiv ist.
    """
    anchor = state.last_cron_timestamp
    if anchor is None:
        return ResolvedPatch()
    anchor = ensure_aware(anchor)

    declared = {patch.name for patch in patches}
    carried = state.last_scheduled_patch_name if state.last_scheduled_patch_name in declared else ""

    winner = ""
    most_latest = anchor
    for patch in patches:
        latest = latest_fire_time(patch, anchor, now, max_tries)
        # Strikt später: bei Gleichstand bleibt der zuerst deklarierte
        if latest is not None and latest > most_latest:
            winner = patch.name
            most_latest = latest

    if winner:
        log.debug("patch_resolved", patch=winner, fired_at=most_latest.isoformat())
        return ResolvedPatch(name=winner, fired_at=most_latest)
    if carried:
        return ResolvedPatch(name=carried, carried_forward=True)
    return ResolvedPatch()
