from datetime import date, datetime, time, timedelta, timezone
from typing import Tuple
from zoneinfo import ZoneInfo

from app.core.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def local_day_bounds(day_from: date, day_to: date) -> Tuple[datetime, datetime]:
    """
    Convierte un rango de días calendario (inclusive) en la zona horaria del
    negocio a un intervalo UTC semiabierto [inicio, fin).
    """
    tz = ZoneInfo(settings.TIMEZONE)
    start = datetime.combine(day_from, time.min, tzinfo=tz).astimezone(timezone.utc)
    end = datetime.combine(day_to + timedelta(days=1), time.min, tzinfo=tz).astimezone(timezone.utc)
    return start, end


def local_day_start(day: date) -> datetime:
    return local_day_bounds(day, day)[0]


def local_day_end(day: date) -> datetime:
    return local_day_bounds(day, day)[1]
