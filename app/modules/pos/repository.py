"""
Acceso a datos de la caja activa de cada punto de venta.
"""
from typing import Optional
from uuid import UUID
import logging

from fastapi import status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.modules.pos.models import CashRegister
from app.modules.pdv.models import PDV
from app.common.exceptions import CajaDomainError, PUNTO_VENTA_NO_ENCONTRADO, CAJA_NO_ENCONTRADA

logger = logging.getLogger(__name__)

VIRTUAL_REGISTER_NAME = "Caja Virtual (Auto)"


class CashRegisterRepository:
    """Búsqueda y aprovisionamiento perezoso de cajas"""

    def __init__(self, db: Session):
        self.db = db

    def get_active(self, tenant_id: UUID, pdv_id: UUID, for_update: bool = False) -> Optional[CashRegister]:
        query = self.db.query(CashRegister).filter(
            CashRegister.tenant_id == tenant_id,
            CashRegister.pdv_id == pdv_id,
            CashRegister.is_active == True
        ).order_by(CashRegister.created_at.asc())
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get_by_id(self, tenant_id: UUID, register_id: UUID, for_update: bool = False) -> CashRegister:
        query = self.db.query(CashRegister).filter(
            CashRegister.id == register_id,
            CashRegister.tenant_id == tenant_id
        )
        if for_update:
            query = query.with_for_update()
        register = query.first()

        if not register:
            raise CajaDomainError(
                CAJA_NO_ENCONTRADA,
                "Caja no encontrada",
                status_code=status.HTTP_404_NOT_FOUND
            )
        return register

    def get_or_create_active(self, tenant_id: UUID, pdv_id: UUID) -> CashRegister:
        """
        Caja activa del PDV; si no existe se crea una caja virtual cerrada.

        Dos primeras operaciones simultáneas colapsan en una sola caja gracias
        al índice único parcial sobre (pdv_id) WHERE is_active.
        """
        register = self.get_active(tenant_id, pdv_id)
        if register:
            return register

        pdv = self.db.query(PDV).filter(PDV.id == pdv_id, PDV.tenant_id == tenant_id).first()
        if not pdv:
            raise CajaDomainError(
                PUNTO_VENTA_NO_ENCONTRADO,
                "Punto de venta no encontrado",
                status_code=status.HTTP_404_NOT_FOUND
            )

        try:
            with self.db.begin_nested():
                register = CashRegister(
                    tenant_id=tenant_id,
                    pdv_id=pdv_id,
                    name=VIRTUAL_REGISTER_NAME,
                    is_virtual=True,
                    is_active=True,
                    is_open=False,
                    opening_float=0,
                    opened_at=None
                )
                self.db.add(register)
            logger.info(f"Caja virtual creada para PDV {pdv_id}: {register.id}")
            return register

        except IntegrityError:
            logger.info(f"Caja activa del PDV {pdv_id} creada en paralelo, reutilizando")
            register = self.get_active(tenant_id, pdv_id)
            if register is None:
                raise
            return register


def get_or_create_active_register(db: Session, tenant_id: UUID, pdv_id: UUID) -> CashRegister:
    return CashRegisterRepository(db).get_or_create_active(tenant_id, pdv_id)
