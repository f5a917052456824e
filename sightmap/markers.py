from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .timeutil import as_utc, utcnow

RECENT = "red"
TODAY = "yellow"
PAST = "black"

# Ordered youngest first; a sighting falls in the first bucket whose max_age it is under.
LEGEND: List[Dict] = [
    {
        "id": RECENT,
        "name": {"en": "Recent Activity (< 4 hours)", "es": "Actividad Reciente (< 4 horas)"},
        "icon": "/redHat.png",
        "max_age_hours": 4,
    },
    {
        "id": TODAY,
        "name": {"en": "Today's Activity (4-8 hours)", "es": "Actividad de Hoy (4-8 horas)"},
        "icon": "/yellowHat.png",
        "max_age_hours": 8,
    },
    {
        "id": PAST,
        "name": {"en": "Past Activity (> 8 hours)", "es": "Actividad Pasada (> 8 horas)"},
        "icon": "/blackHat.png",
        "max_age_hours": None,
    },
]

MARKER_IDS = tuple(entry["id"] for entry in LEGEND)


def marker_for(time_date: datetime, now: Optional[datetime] = None) -> str:
    age = (now or utcnow()) - as_utc(time_date)
    for entry in LEGEND:
        limit = entry["max_age_hours"]
        if limit is None or age < timedelta(hours=limit):
            return entry["id"]
    return PAST


def icon_for(marker_id: str) -> str:
    for entry in LEGEND:
        if entry["id"] == marker_id:
            return entry["icon"]
    raise KeyError(marker_id)


def legend() -> List[Dict]:
    return [{k: v for k, v in entry.items() if k != "max_age_hours"} for entry in LEGEND]
