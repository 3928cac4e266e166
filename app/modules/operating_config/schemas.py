"""
Esquema tipado de la configuración operativa.

Define las claves reconocidas y sus valores por defecto. Las claves no
reconocidas de un override se ignoran al validar.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID
from datetime import datetime
import re

from app.core.config import settings

HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

AperturaModo = Literal["manual", "primera_venta", "hora_programada"]
AccionCajaCerrada = Literal["preguntar", "fuera_caja", "bloquear"]
ManejoFueraCajaAlCerrar = Literal["preguntar", "incluir", "excluir"]
ReglaConsumosAlCierre = Literal[
    "pendiente_siguiente_caja",
    "cobro_automatico_venta",
    "cobro_automatico_costo",
    "perdonado",
    "no_permitir_cierre",
]


def _validate_hhmm(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    if not HHMM_PATTERN.match(v):
        raise ValueError("Hora inválida, use formato HH:MM (24h)")
    return v


class _Section(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ===== CONFIGURACIÓN EFECTIVA (siempre completa) =====

class RegionalConfig(_Section):
    timezone: str = Field(default_factory=lambda: settings.DEFAULT_TIMEZONE)


class PinConfig(_Section):
    habilitar_limite_intentos: bool = False
    max_intentos: int = 5
    bloqueo_minutos: int = 15
    mostrar_contador_intentos: bool = False


class CajaConfig(_Section):
    cierre_automatico_habilitado: bool = False
    cierre_automatico_hora: Optional[str] = None
    apertura_modo: AperturaModo = "manual"
    apertura_hora: Optional[str] = None
    apertura_roles_permitidos: List[str] = Field(default_factory=list)
    accion_caja_cerrada: AccionCajaCerrada = "preguntar"
    permitir_ventas_fuera_caja: bool = True
    manejo_fuera_caja_al_cerrar: ManejoFueraCajaAlCerrar = "preguntar"

    _hhmm = field_validator("cierre_automatico_hora", "apertura_hora")(_validate_hhmm)


class ConsumosConfig(_Section):
    al_cierre_sin_liquidar: ReglaConsumosAlCierre = "pendiente_siguiente_caja"


class OperatingConfig(_Section):
    """Configuración operativa efectiva de un tenant / punto de venta."""
    regional: RegionalConfig = Field(default_factory=RegionalConfig)
    pin: PinConfig = Field(default_factory=PinConfig)
    caja: CajaConfig = Field(default_factory=CajaConfig)
    consumos: ConsumosConfig = Field(default_factory=ConsumosConfig)


# ===== PATCH (todas las claves opcionales) =====

class RegionalPatch(_Section):
    timezone: Optional[str] = Field(None, min_length=3, max_length=80)


class PinPatch(_Section):
    habilitar_limite_intentos: Optional[bool] = None
    max_intentos: Optional[int] = Field(None, ge=1, le=20)
    bloqueo_minutos: Optional[int] = Field(None, ge=1, le=120)
    mostrar_contador_intentos: Optional[bool] = None


class CajaPatch(_Section):
    cierre_automatico_habilitado: Optional[bool] = None
    cierre_automatico_hora: Optional[str] = None
    apertura_modo: Optional[AperturaModo] = None
    apertura_hora: Optional[str] = None
    apertura_roles_permitidos: Optional[List[str]] = None
    accion_caja_cerrada: Optional[AccionCajaCerrada] = None
    permitir_ventas_fuera_caja: Optional[bool] = None
    manejo_fuera_caja_al_cerrar: Optional[ManejoFueraCajaAlCerrar] = None

    _hhmm = field_validator("cierre_automatico_hora", "apertura_hora")(_validate_hhmm)


class ConsumosPatch(_Section):
    al_cierre_sin_liquidar: Optional[ReglaConsumosAlCierre] = None


class OperatingConfigPatch(_Section):
    regional: Optional[RegionalPatch] = None
    pin: Optional[PinPatch] = None
    caja: Optional[CajaPatch] = None
    consumos: Optional[ConsumosPatch] = None


class OperatingConfigUpdate(BaseModel):
    """Request para guardar un override de configuración operativa."""
    scope: Literal["empresa", "pv"] = Field("empresa", description="Alcance del override")
    pdv_id: Optional[UUID] = Field(None, description="Requerido si scope = pv")
    config: OperatingConfigPatch = Field(..., description="Claves a sobrescribir")


class OperatingConfigOut(BaseModel):
    """Configuración guardada y efectiva para un alcance."""
    scope: Literal["empresa", "pv"]
    pdv_id: Optional[UUID] = None
    saved_config: Dict[str, Any] = Field(default_factory=dict, description="Override guardado en este alcance")
    effective_config: OperatingConfig = Field(..., description="Configuración efectiva resuelta")
    defaults: OperatingConfig = Field(default_factory=OperatingConfig, description="Valores por defecto")
    updated_at: Optional[datetime] = None
