"""Apply-Entscheidung: Target erzeugen, aktualisieren oder in Ruhe lassen.

``build_target`` leitet das gewünschte Target aus Template + aktivem
Patch ab. ``decide`` vergleicht es mit dem Live-Target und liefert die
Aktion, unabhängig davon wie das Target gespeichert wird.
"""

from __future__ import annotations

import copy

from cronpatch.errors import UnknownPatchError
from cronpatch.models import (
    Action,
    ActionKind,
    CronResource,
    SkipReason,
    Target,
)

_TRUTHY = frozenset({"true", "1", "yes"})


def build_target(resource: CronResource, patch_name: str) -> Target:
    """Baut das gewünschte Target aus Template und Patch.

    Felder, die der Patch nicht nennt, bleiben auf dem Template-Wert,
    nicht auf dem vorherigen Live-Wert. Genannte Felder werden als Ganzes
    ersetzt (Listen werden nicht gemergt).

    Raises:
        UnknownPatchError: Wenn ``patch_name`` nicht deklariert ist.
    """
    template = resource.template
    spec = copy.deepcopy(template.spec)

    if patch_name:
        scheduled = resource.get_patch(patch_name)
        if scheduled is None:
            raise UnknownPatchError(
                f"No scheduled patch named '{patch_name}'",
                details={"patch": patch_name, "resource": str(resource.key)},
            )
        if scheduled.patch:
            for field, value in scheduled.patch.items():
                spec[field] = copy.deepcopy(value)

    labels: dict[str, str] = {}
    annotations: dict[str, str] = {}
    if template.metadata is not None:
        labels = dict(template.metadata.labels)
        annotations = dict(template.metadata.annotations)

    return Target(
        namespace=resource.namespace,
        name=resource.name,
        labels=labels,
        annotations=annotations,
        spec=spec,
        owner=resource.key,
    )


def has_skip_marker(target: Target, skip_marker: str) -> bool:
    """True wenn das Target die Skip-Annotation mit wahrem Wert trägt."""
    value = target.annotations.get(skip_marker)
    return value is not None and value.strip().lower() in _TRUTHY


def decide(
    current: Target | None,
    desired: Target,
    skip_marker: str,
    skip_advances_anchor: bool = False,
) -> Action:
    """Entscheidet Create / Update / Skip.

    Args:
        current: Live-Target oder None wenn es nicht existiert.
        desired: Aus Template + Patch abgeleitetes Target.
        skip_marker: Annotation-Key, der Änderungen unterdrückt.
        skip_advances_anchor: Ob ein Skip wegen der Annotation den Anchor
            weiterschiebt.

    Returns:
        Die Aktion. Ein Skip wegen ``no-change`` schiebt den Anchor nie weiter.
    """
    if current is None:
        return Action(kind=ActionKind.CREATE)
    if has_skip_marker(current, skip_marker):
        return Action(
            kind=ActionKind.SKIP,
            reason=SkipReason.OVERRIDE_MARKER,
            advances_anchor=skip_advances_anchor,
        )
    if current.spec == desired.spec:
        return Action(kind=ActionKind.SKIP, reason=SkipReason.NO_CHANGE, advances_anchor=False)
    return Action(kind=ActionKind.UPDATE)
