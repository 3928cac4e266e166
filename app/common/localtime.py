"""
Helpers de fecha/hora local para la operativa de caja.

Todas las marcas de tiempo se persisten en UTC. La "fecha operativa" y las
comparaciones de hora del día se calculan siempre en la zona horaria resuelta
de la configuración operativa del tenant.
"""
from datetime import date, datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)


def get_zone(tz_name: Optional[str]) -> ZoneInfo:
    """Obtener ZoneInfo; si el nombre es inválido se usa la zona por defecto."""
    try:
        return ZoneInfo(tz_name or settings.DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Zona horaria inválida '{tz_name}', usando {settings.DEFAULT_TIMEZONE}")
        return ZoneInfo(settings.DEFAULT_TIMEZONE)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normaliza un datetime a UTC aware (los motores sin tz devuelven naive UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_local(value: datetime, zone: ZoneInfo) -> datetime:
    return ensure_utc(value).astimezone(zone)


def operating_date(opened_at: datetime, zone: ZoneInfo) -> date:
    """Fecha calendario local de la apertura de la caja."""
    return to_local(opened_at, zone).date()


def parse_time_of_day(value: Optional[str]) -> Optional[time]:
    """Parsear 'HH:MM' a time. Devuelve None si el valor es vacío o inválido."""
    if not value:
        return None
    try:
        hours, minutes = value.strip().split(":")[:2]
        return time(int(hours), int(minutes))
    except (ValueError, AttributeError):
        logger.warning(f"Hora inválida en configuración operativa: {value!r}")
        return None


def local_datetime_utc(day: date, at: time, zone: ZoneInfo) -> datetime:
    """Combina fecha y hora locales y devuelve el instante equivalente en UTC."""
    return datetime.combine(day, at, tzinfo=zone).astimezone(timezone.utc)
