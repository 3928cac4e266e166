"""
Sumidero de auditoría best-effort.

Se invoca siempre después del commit de la operación principal; una falla al
registrar el evento se loguea y nunca aborta la operación que lo generó.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import UUID
import logging

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.modules.audit.models import AuditEvent

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """Metadatos opcionales del request que origina el evento."""
    ip: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request: Optional[Request]) -> Optional["RequestContext"]:
        if request is None:
            return None
        return cls(
            ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent")
        )


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class AuditLogger:
    """Registra eventos de auditoría con commit propio."""

    def __init__(self, db: Session):
        self.db = db

    def log(self, action: str, tenant_id: Optional[UUID] = None, pdv_id: Optional[UUID] = None,
            user_id: Optional[UUID] = None, entity_type: Optional[str] = None,
            entity_id: Optional[Any] = None, metadata: Optional[Dict[str, Any]] = None,
            context: Optional[RequestContext] = None) -> None:
        try:
            event = AuditEvent(
                tenant_id=tenant_id,
                pdv_id=pdv_id,
                user_id=user_id,
                action=action,
                entity_type=entity_type,
                entity_id=str(entity_id) if entity_id is not None else None,
                event_metadata=_jsonable(metadata or {}),
                ip=context.ip if context else None,
                user_agent=context.user_agent[:255] if context and context.user_agent else None
            )
            self.db.add(event)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error registrando auditoría '{action}': {e}")
