from fastapi import HTTPException, status
from sqlalchemy.orm import Session
from app.modules.pdv.models import PDV
from app.modules.pdv.schemas import PDVcreate, PDVUpdate
from app.modules.pos.models import CashRegister
from app.modules.audit.service import AuditLogger
from app.common.exceptions import CajaDomainError, PUNTO_VENTA_TIENE_CAJA_ABIERTA
from uuid import UUID
import logging

logger = logging.getLogger(__name__)

def create_pdv(pdv: PDVcreate, db: Session, tenant_id: UUID):
    existing_pdv = db.query(PDV).filter(PDV.tenant_id == tenant_id, PDV.name == pdv.name).first()
    if existing_pdv:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Ya existe un punto de venta con el nombre '{pdv.name}' en esta empresa"
        )

    new_pdv = PDV(**pdv.model_dump(), tenant_id=tenant_id)
    db.add(new_pdv)
    db.commit()
    db.refresh(new_pdv)
    return new_pdv


def get_all_pdvs(db: Session, tenant_id: UUID, limit: int = 100, offset: int = 0):
    query = db.query(PDV).filter(PDV.tenant_id == tenant_id)
    total = query.count()
    pdvs = query.order_by(PDV.name.asc()).offset(offset).limit(limit).all()
    return {"pdvs": pdvs, "total": total, "limit": limit, "offset": offset}

def get_pdv_by_id(pdv_id: UUID, db: Session, tenant_id: UUID):
    pdv = db.query(PDV).filter(PDV.id == pdv_id, PDV.tenant_id == tenant_id).first()

    if not pdv:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="PDV not found"
        )
    return pdv

def update_pdv(pdv_id: UUID, pdv_update: PDVUpdate, db: Session, tenant_id: UUID):
    pdv = get_pdv_by_id(pdv_id, db, tenant_id)

    for key, value in pdv_update.model_dump(exclude_unset=True).items():
        setattr(pdv, key, value)

    db.commit()
    db.refresh(pdv)
    return pdv

def set_pdv_status(pdv_id: UUID, is_active: bool, db: Session, tenant_id: UUID, user_id: UUID = None):
    """
    Activar o inactivar un PDV.

    No se puede inactivar un PDV cuya caja activa está abierta: primero debe
    cerrarse la caja para que el arqueo quede registrado.
    """
    pdv = db.query(PDV).filter(
        PDV.id == pdv_id,
        PDV.tenant_id == tenant_id
    ).with_for_update().first()

    if not pdv:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="PDV not found"
        )

    if not is_active:
        open_register = db.query(CashRegister).filter(
            CashRegister.tenant_id == tenant_id,
            CashRegister.pdv_id == pdv_id,
            CashRegister.is_active == True,
            CashRegister.is_open == True
        ).first()

        if open_register:
            db.rollback()
            raise CajaDomainError(
                PUNTO_VENTA_TIENE_CAJA_ABIERTA,
                "No se puede inactivar el punto de venta con una caja abierta. Cierra la caja primero.",
                extra={"cajaId": str(open_register.id)}
            )

    pdv.is_active = is_active
    db.commit()
    db.refresh(pdv)

    logger.info(f"PDV {pdv_id} {'activado' if is_active else 'inactivado'}")
    AuditLogger(db).log(
        "punto_venta_estado",
        tenant_id=tenant_id,
        pdv_id=pdv_id,
        user_id=user_id,
        entity_type="punto_venta",
        entity_id=pdv_id,
        metadata={"activo": is_active}
    )
    return pdv
