"""Cron-Ausdrücke: Parsen in APScheduler-Trigger.

Unterstützt crontab-Syntax (5 Felder), Deskriptoren wie ``@daily``
und einen optionalen ``CRON_TZ=<zone>``-Präfix. Die Wochentagszählung
folgt crontab (0 und 7 = Sonntag), nicht APScheduler (0 = Montag);
deshalb wird das Wochentagsfeld vor der Übergabe in Namen übersetzt.

Sind Monatstag UND Wochentag eingeschränkt (keines der beiden Felder
beginnt mit ``*`` oder ``?``), feuert der Schedule wenn EINES der beiden
Felder passt (crontab-Semantik). APScheduler verknüpft Felder mit UND,
daher wird dieser Fall als OrTrigger abgebildet. ``*/2`` im Monatstag
zählt wie ``*`` als uneingeschränkt; dann gilt UND.
"""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger

from cronpatch.errors import InvalidScheduleError
from cronpatch.models import ensure_aware

DEFAULT_TIMEZONE = "UTC"

_WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")

_DESCRIPTORS: dict[str, str] = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}

_TZ_PREFIXES = ("CRON_TZ=", "TZ=")

_STAR_FIELDS = ("*", "?", "*/1")

# Felder, die mit "*" oder "?" beginnen, schränken den Tag nicht ein (auch "*/2")
_UNRESTRICTED_PREFIXES = ("*", "?")


def _parse_cron_fields(expression: str) -> dict[str, str]:
    """Zerlegt einen 5-Feld-Ausdruck in APScheduler-CronTrigger-Felder.

    Args:
        expression: Cron-Ausdruck (z.B. "0 7 * * 1-5") oder Deskriptor.

    Returns:
        Dict mit den Feldern minute, hour, day, month, day_of_week
        (Wochentag noch in crontab-Notation).

    Raises:
        ValueError: Bei falscher Feldanzahl oder unbekanntem Deskriptor.
    """
    stripped = expression.strip()
    if stripped.startswith("@"):
        descriptor = stripped.lower()
        if descriptor not in _DESCRIPTORS:
            msg = f"Unbekannter Deskriptor: '{expression}'"
            raise ValueError(msg)
        stripped = _DESCRIPTORS[descriptor]

    parts = stripped.split()
    if len(parts) != 5:
        msg = f"Cron-Ausdruck muss 5 Felder haben, hat {len(parts)}: '{expression}'"
        raise ValueError(msg)

    return {
        "minute": parts[0],
        "hour": parts[1],
        "day": parts[2],
        "month": parts[3],
        "day_of_week": parts[4],
    }


def _weekday_value(token: str) -> int:
    """Wochentag als crontab-Zahl (0-7) aus Ziffer oder Name."""
    token = token.strip().lower()
    if token.isdigit():
        value = int(token)
        if value > 7:
            msg = f"Wochentag außerhalb 0-7: '{token}'"
            raise ValueError(msg)
        return value
    if token in _WEEKDAY_NAMES:
        return _WEEKDAY_NAMES.index(token)
    msg = f"Unbekannter Wochentag: '{token}'"
    raise ValueError(msg)


def _translate_day_of_week(field: str) -> str:
    """Übersetzt ein crontab-Wochentagsfeld in eine Namensliste für APScheduler.

    Beispiel: ``"1-5"`` → ``"mon,tue,wed,thu,fri"``, ``"0,6"`` → ``"sun,sat"``.
    """
    if field in _STAR_FIELDS:
        return "*"

    days: set[int] = set()
    for term in field.split(","):
        base, has_step, step_text = term.partition("/")
        step = 1
        if has_step:
            if not step_text.isdigit() or int(step_text) == 0:
                msg = f"Ungültige Schrittweite im Wochentag: '{term}'"
                raise ValueError(msg)
            step = int(step_text)

        if base in ("*", "?"):
            first, last = 0, 6
        elif "-" in base:
            low, high = base.split("-", 1)
            first, last = _weekday_value(low), _weekday_value(high)
        else:
            first = _weekday_value(base)
            # "N/step" läuft bis zum Ende der Woche
            last = 6 if has_step else first

        if first > last:
            msg = f"Wochentagsbereich rückwärts: '{term}'"
            raise ValueError(msg)
        days.update(day % 7 for day in range(first, last + 1, step))

    return ",".join(_WEEKDAY_NAMES[day] for day in sorted(days))


def _split_timezone_prefix(expression: str) -> tuple[str, str]:
    """Trennt ``CRON_TZ=<zone> <ausdruck>`` in (zone, ausdruck)."""
    stripped = expression.strip()
    for prefix in _TZ_PREFIXES:
        if stripped.startswith(prefix):
            zone, _, rest = stripped[len(prefix):].partition(" ")
            return zone, rest
    return "", stripped


def resolve_timezone(name: str) -> ZoneInfo:
    """Löst einen IANA-Zeitzonennamen auf. Leer = UTC.

    Raises:
        InvalidScheduleError: Bei unbekannter Zeitzone.
    """
    try:
        return ZoneInfo(name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidScheduleError(
            f"Unbekannte Zeitzone: '{name}'",
            details={"timezone": name},
        ) from exc


def parse_schedule(expression: str, timezone: str = "") -> BaseTrigger:
    """Baut aus Cron-Ausdruck und Zeitzone einen APScheduler-Trigger.

    Args:
        expression: Cron-Ausdruck, Deskriptor, optional mit ``CRON_TZ=``-Präfix.
        timezone: IANA-Zeitzone. Hat Vorrang vor einem Präfix im Ausdruck.

    Returns:
        CronTrigger, oder OrTrigger wenn Monatstag und Wochentag
        beide eingeschränkt sind.

    Raises:
        InvalidScheduleError: Bei ungültigem Ausdruck oder unbekannter Zeitzone.
    """
    prefix_zone, body = _split_timezone_prefix(expression)
    tz = resolve_timezone(timezone or prefix_zone)

    try:
        fields = _parse_cron_fields(body)
        day, day_of_week = fields["day"], fields["day_of_week"]
        common = {
            "minute": fields["minute"],
            "hour": fields["hour"],
            "month": fields["month"],
            "timezone": tz,
        }
        if day.startswith(_UNRESTRICTED_PREFIXES) or day_of_week.startswith(_UNRESTRICTED_PREFIXES):
            return CronTrigger(
                day="*" + day[1:] if day.startswith("?") else day,
                day_of_week=_translate_day_of_week(day_of_week),
                **common,
            )
        return OrTrigger([
            CronTrigger(day=day, day_of_week="*", **common),
            CronTrigger(day="*", day_of_week=_translate_day_of_week(day_of_week), **common),
        ])
    except ValueError as exc:
        raise InvalidScheduleError(
            f"Ungültiger Cron-Ausdruck '{expression}': {exc}",
            details={"schedule": expression, "timezone": timezone},
        ) from exc


def next_fire_time(trigger: BaseTrigger, after: datetime) -> datetime | None:
    """Erster Feuerzeitpunkt strikt nach ``after`` (None = keiner mehr)."""
    after = ensure_aware(after)
    return trigger.get_next_fire_time(after, after)
