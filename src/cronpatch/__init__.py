"""cronpatch · Cron-gesteuerte Patches für verwaltete Objekte.

Zwei Kernbausteine:
  - JobRegistry: Cron-Jobs pro Objekt, thread-sicher, APScheduler-Backend
  - resolve(): welcher benannte Patch ist zu einem Zeitpunkt aktiv
"""

__version__ = "0.1.0"
