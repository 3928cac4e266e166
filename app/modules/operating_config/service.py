"""
Resolución de la configuración operativa efectiva.

Orden: defaults ← override del tenant ← override del punto de venta.
La resolución nunca falla: ante cualquier error se devuelven los defaults,
una venta jamás debe caerse por culpa de la configuración.
"""
from copy import deepcopy
from typing import Any, Dict, Optional
from uuid import UUID
import json
import logging

from fastapi import HTTPException, status
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.modules.operating_config.models import OperatingConfigOverride
from app.modules.operating_config.schemas import (
    OperatingConfig, OperatingConfigOut, OperatingConfigPatch, OperatingConfigUpdate
)
from app.modules.pdv.models import PDV
from app.modules.audit.service import AuditLogger, RequestContext
from app.common.exceptions import CajaDomainError, PUNTO_VENTA_NO_ENCONTRADO, internal_error

logger = logging.getLogger(__name__)


def default_operating_config() -> Dict[str, Any]:
    """Defaults compilados como dict (siempre completo)."""
    return OperatingConfig().model_dump()


def normalize_config_input(value: Any) -> Dict[str, Any]:
    """
    Normaliza un payload de override.

    Los strings se interpretan como JSON; cualquier cosa que no sea un
    mapping termina como dict vacío.
    """
    if value is None:
        return {}
    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value)
        except (TypeError, ValueError):
            logger.warning("Override de configuración operativa con JSON inválido, se ignora")
            return {}
    if not isinstance(value, dict):
        return {}
    return value


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge profundo de `override` sobre `base` sin mutar ninguno de los dos.

    - dict + dict: merge recursivo
    - None en el override: no sobrescribe
    - cualquier otro valor (listas incluidas): reemplaza completo
    """
    result = deepcopy(base)
    for key, value in override.items():
        if value is None:
            continue
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = deepcopy(value)
    return result


def _load_override(db: Session, tenant_id: UUID, pdv_id: Optional[UUID]) -> Optional[OperatingConfigOverride]:
    query = db.query(OperatingConfigOverride).filter(OperatingConfigOverride.tenant_id == tenant_id)
    if pdv_id is None:
        query = query.filter(OperatingConfigOverride.pdv_id.is_(None))
    else:
        query = query.filter(OperatingConfigOverride.pdv_id == pdv_id)
    return query.first()


def resolve_operating_config(db: Session, tenant_id: UUID, pdv_id: Optional[UUID] = None) -> OperatingConfig:
    """
    Configuración efectiva para (tenant, punto de venta).

    Las lecturas corren dentro de un savepoint para que un error de
    almacenamiento no deje abortada la transacción del llamador.
    """
    try:
        with db.begin_nested():
            tenant_override = _load_override(db, tenant_id, None)
            pdv_override = _load_override(db, tenant_id, pdv_id) if pdv_id else None

            merged = default_operating_config()
            if tenant_override is not None:
                merged = deep_merge(merged, normalize_config_input(tenant_override.config))
            if pdv_override is not None:
                merged = deep_merge(merged, normalize_config_input(pdv_override.config))

        return OperatingConfig.model_validate(merged)

    except SQLAlchemyError as e:
        logger.warning(f"Error leyendo configuración operativa de tenant {tenant_id}: {e}. Usando defaults")
    except ValidationError as e:
        logger.warning(f"Configuración operativa inválida para tenant {tenant_id} / PDV {pdv_id}: {e}. Usando defaults")

    return OperatingConfig()


# ===== ADMINISTRACIÓN =====

def _validate_scope(db: Session, tenant_id: UUID, scope: str, pdv_id: Optional[UUID]) -> Optional[UUID]:
    if scope == "empresa":
        return None

    if pdv_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="pdv_id es requerido cuando scope = pv"
        )

    pdv = db.query(PDV).filter(PDV.id == pdv_id, PDV.tenant_id == tenant_id).first()
    if not pdv:
        raise CajaDomainError(
            PUNTO_VENTA_NO_ENCONTRADO,
            "Punto de venta no encontrado",
            status_code=status.HTTP_404_NOT_FOUND
        )
    return pdv_id


def get_operating_config(db: Session, tenant_id: UUID, scope: str = "empresa",
                         pdv_id: Optional[UUID] = None) -> OperatingConfigOut:
    """Override guardado y configuración efectiva de un alcance."""
    pdv_id = _validate_scope(db, tenant_id, scope, pdv_id)
    override = _load_override(db, tenant_id, pdv_id)

    return OperatingConfigOut(
        scope=scope,
        pdv_id=pdv_id,
        saved_config=normalize_config_input(override.config) if override else {},
        effective_config=resolve_operating_config(db, tenant_id, pdv_id),
        defaults=OperatingConfig(),
        updated_at=override.updated_at if override else None
    )


def update_operating_config(db: Session, tenant_id: UUID, payload: OperatingConfigUpdate,
                            user_id: Optional[UUID] = None,
                            context: Optional[RequestContext] = None) -> OperatingConfigOut:
    """
    Guarda el override de un alcance.

    El patch se mergea sobre el override existente; las claves no
    reconocidas del override previo se descartan.
    """
    pdv_id = _validate_scope(db, tenant_id, payload.scope, payload.pdv_id)
    patch = payload.config.model_dump(exclude_none=True)

    try:
        override = db.query(OperatingConfigOverride).filter(
            OperatingConfigOverride.tenant_id == tenant_id,
            OperatingConfigOverride.pdv_id.is_(None) if pdv_id is None else OperatingConfigOverride.pdv_id == pdv_id
        ).with_for_update().first()

        current = normalize_config_input(override.config) if override else {}
        try:
            current = OperatingConfigPatch.model_validate(current).model_dump(exclude_none=True)
        except ValidationError:
            logger.warning(f"Override previo inválido para tenant {tenant_id} / PDV {pdv_id}, se reemplaza")
            current = {}

        merged = deep_merge(current, patch)

        if override is None:
            override = OperatingConfigOverride(tenant_id=tenant_id, pdv_id=pdv_id, config=merged)
            db.add(override)
        else:
            override.config = merged

        db.commit()
        db.refresh(override)

    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error guardando configuración operativa: {e}")
        raise internal_error()

    logger.info(f"Configuración operativa actualizada: tenant {tenant_id}, scope {payload.scope}, PDV {pdv_id}")
    AuditLogger(db).log(
        "configuracion_operativa_actualizada",
        tenant_id=tenant_id,
        pdv_id=pdv_id,
        user_id=user_id,
        entity_type="configuracion_operativa",
        entity_id=override.id,
        metadata={"scope": payload.scope, "cambios": patch},
        context=context
    )

    return get_operating_config(db, tenant_id, payload.scope, pdv_id)
