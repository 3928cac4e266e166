"""
Endpoints de consumos del staff
"""
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from app.database.database import get_db
from app.modules.auth.dependencies import AuthDependencies
from app.modules.auth.schemas import AuthContext
from app.modules.audit.service import RequestContext
from app.modules.consumptions.models import SettlementStatus
from app.modules.consumptions.schemas import (
    ConsumptionCreate, ConsumptionOut, ConsumptionList, QuickCancelRequest,
    ManualSettlementRequest, ManualSettlementResult
)
from app.modules.consumptions.service import ConsumptionService
from app.modules.pos.routers import decision_required_response

consumptions_router = APIRouter(prefix="/consumptions", tags=["Consumptions"])


@consumptions_router.post("", response_model=ConsumptionOut, status_code=status.HTTP_201_CREATED)
async def register_consumption(
    data: ConsumptionCreate,
    request: Request,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(["owner", "admin", "seller", "cashier"])),
    db: Session = Depends(get_db)
):
    """
    Registrar consumo del staff.

    El consumo queda `pendiente` hasta que el cierre de caja o un admin lo
    liquide. Con la caja cerrada puede responder 409 pidiendo una decisión.
    """
    service = ConsumptionService(db)
    admission, consumption = service.register_consumption(
        auth_context.tenant_id, data, auth_context.user_id,
        context=RequestContext.from_request(request)
    )
    if consumption is None:
        return decision_required_response(admission)
    return consumption


@consumptions_router.post("/quick-cancel", response_model=ConsumptionOut)
async def quick_cancel_consumption(
    data: QuickCancelRequest,
    request: Request,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(["owner", "admin", "seller", "cashier"])),
    db: Session = Depends(get_db)
):
    """Cancelar el último consumo del staff (ventana de 5 segundos)."""
    service = ConsumptionService(db)
    return service.quick_cancel(
        auth_context.tenant_id, data, auth_context.user_id,
        context=RequestContext.from_request(request)
    )


@consumptions_router.get("", response_model=ConsumptionList)
async def list_consumptions(
    pdv_id: Optional[UUID] = Query(None, description="Filtrar por PDV"),
    user_id: Optional[UUID] = Query(None, description="Filtrar por staff"),
    settlement_status: Optional[SettlementStatus] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(["owner", "admin", "accountant"])),
    db: Session = Depends(get_db)
):
    service = ConsumptionService(db)
    return service.list_consumptions(
        auth_context.tenant_id, pdv_id, user_id,
        settlement_status.value if settlement_status else None,
        limit, offset
    )


@consumptions_router.post("/settle", response_model=ManualSettlementResult)
async def settle_consumptions(
    payload: ManualSettlementRequest,
    request: Request,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(["owner", "admin"])),
    db: Session = Depends(get_db)
):
    """
    Liquidación manual de consumos pendientes.

    - **precio_venta** / **precio_costo**: cobra el total correspondiente
    - **porcentaje**: `rule_value` entre 0 y 100 sobre el precio de venta
    - **monto_fijo**: `rule_value` por consumo, tope en el precio de venta
    - **perdonado**: no se cobra
    """
    service = ConsumptionService(db)
    return service.settle_consumptions_manually(
        auth_context.tenant_id, payload, auth_context.user_id,
        context=RequestContext.from_request(request)
    )
