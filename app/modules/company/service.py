"""
Resolución del tenant actual.

El tenant se pasa explícitamente a cada llamada del núcleo de caja; estas
funciones sólo lo derivan a partir de un punto de venta cuando el llamador
no lo conoce todavía.
"""
from typing import Optional
from uuid import UUID
import logging

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from app.modules.company.models import Company
from app.modules.pdv.models import PDV

logger = logging.getLogger(__name__)


def get_default_tenant_id(db: Session) -> UUID:
    """Empresa por defecto del sistema (la primera creada)."""
    company = db.query(Company).order_by(Company.created_at.asc()).first()
    if not company:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="No hay empresas configuradas en el sistema"
        )
    return company.id


def get_tenant_id_for_pdv(db: Session, pdv_id: Optional[UUID]) -> UUID:
    """Tenant dueño de un punto de venta activo; sin PDV conocido usa la empresa por defecto."""
    if pdv_id:
        pdv = db.query(PDV).filter(PDV.id == pdv_id, PDV.is_active == True).first()
        if pdv:
            return pdv.tenant_id
        logger.warning(f"Punto de venta {pdv_id} no encontrado, usando empresa por defecto")
    return get_default_tenant_id(db)
