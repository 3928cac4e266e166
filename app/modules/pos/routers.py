"""
Routers FastAPI para el módulo POS (Point of Sale)

Define los endpoints REST para:
- CashRegisters: estado, admisión de operaciones, apertura, ajuste y cierre con arqueo
- Cierre automático: barrido explícito por tenant
- Ventas fuera de caja: listado y decisiones masivas
- Sales: confirmación de ventas

Todos los endpoints implementan:
- Validación de permisos por rol
- Filtros multi-tenant automáticos
- Respuesta 409 estructurada cuando la caja cerrada requiere una decisión
"""

from fastapi import APIRouter, Depends, Path, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from app.database.database import get_db
from app.modules.auth.dependencies import AuthDependencies
from app.modules.auth.schemas import AuthContext
from app.modules.audit.service import RequestContext
from app.modules.pos.scheduler import AutomaticClosingService
from app.modules.pos.services import (
    CashRegisterLifecycleService, CashClosingService, POSSaleService, OffRegisterService
)
from app.modules.pos.schemas import (
    AdmissionInputs, AdmissionRequest, AdmissionResult,
    CashRegisterOut, CashRegisterOpen, CashRegisterAdjust, CashRegisterClose,
    ManualCloseResult, CashClosingOut, CashClosingList, SweepResult,
    SaleConfirm, SaleConfirmResult, POSTransactionOut,
    OffRegisterDecision, OffRegisterDecisionResult, OffRegisterList, OffRegisterStatusFilter
)

ADMIN_ROLES = ["owner", "admin"]
OPERATOR_ROLES = ["owner", "admin", "seller", "cashier"]
READ_ROLES = ["owner", "admin", "seller", "cashier", "accountant"]


def decision_required_response(admission: AdmissionResult) -> JSONResponse:
    """409 con los datos que el cliente necesita para decidir sobre la caja cerrada."""
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={
            "detail": {
                "error": admission.code,
                "mensaje": admission.message,
                "cajaId": str(admission.register_id),
                "puedeAbrirCaja": admission.can_open_register,
                "permitirFueraCaja": admission.allow_off_register,
                "accionSugerida": admission.suggested_action.value if admission.suggested_action else None,
                "requiereMontoInicialPrimeraVenta": admission.requires_opening_float_first_sale,
            }
        }
    )


# ===== CASH REGISTERS ROUTER =====

cash_registers_router = APIRouter(prefix="/cash-registers", tags=["POS"])


@cash_registers_router.get("/status", response_model=CashRegisterOut)
async def get_register_status(
    request: Request,
    pdv_id: UUID = Query(..., description="ID del punto de venta"),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(READ_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Estado de la caja activa del PDV.

    Antes de responder evalúa el cierre automático, de modo que una caja
    vencida aparece ya cerrada. Si el PDV no tiene caja se crea una virtual.
    """
    service = CashRegisterLifecycleService(db)
    return service.get_register_status(
        tenant_id=auth_context.tenant_id,
        pdv_id=pdv_id,
        context=RequestContext.from_request(request)
    )


@cash_registers_router.post("/admit", response_model=AdmissionResult)
async def admit_operation(
    payload: AdmissionRequest,
    request: Request,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(OPERATOR_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Admitir una operación (venta / consumo) en el PDV.

    - 200: admitida (con la caja abierta o fuera de caja)
    - 409 `CAJA_CERRADA_REQUIERE_DECISION` / `CAJA_REQUIERE_MONTO_INICIAL_PRIMERA_VENTA`:
      reintentar con `closed_register_action`
    - 409 `CAJA_CERRADA_BLOQUEADA`, `FUERA_CAJA_DESHABILITADO`
    """
    service = CashRegisterLifecycleService(db)
    admission = service.admit_operation(
        tenant_id=auth_context.tenant_id,
        pdv_id=payload.pdv_id,
        operation_type=payload.operation_type,
        decision=AdmissionInputs(
            closed_register_action=payload.closed_register_action,
            opening_float=payload.opening_float,
            user_id=auth_context.user_id
        ),
        context=RequestContext.from_request(request)
    )
    if admission.decision_required:
        return decision_required_response(admission)
    return admission


@cash_registers_router.post("/{register_id}/open", response_model=CashRegisterOut)
async def open_cash_register(
    request: Request,
    register_id: UUID = Path(..., description="ID de la caja registradora"),
    open_data: CashRegisterOpen = ...,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ADMIN_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Abrir caja registradora.

    - **opening_float**: Monto inicial
    - 409 `CAJA_YA_ABIERTA` si la caja ya estaba abierta
    """
    service = CashRegisterLifecycleService(db)
    return service.open_register(
        tenant_id=auth_context.tenant_id,
        register_id=register_id,
        opening_float=open_data.opening_float,
        user_id=auth_context.user_id,
        context=RequestContext.from_request(request)
    )


@cash_registers_router.post("/{register_id}/adjust-opening-float", response_model=CashRegisterOut)
async def adjust_opening_float(
    request: Request,
    register_id: UUID = Path(..., description="ID de la caja registradora"),
    adjust_data: CashRegisterAdjust = ...,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ADMIN_ROLES)),
    db: Session = Depends(get_db)
):
    """Ajustar el monto inicial de una caja abierta."""
    service = CashRegisterLifecycleService(db)
    return service.adjust_opening_float(
        tenant_id=auth_context.tenant_id,
        register_id=register_id,
        new_opening_float=adjust_data.new_opening_float,
        reason=adjust_data.reason,
        user_id=auth_context.user_id,
        context=RequestContext.from_request(request)
    )


@cash_registers_router.post("/{register_id}/close", response_model=ManualCloseResult)
async def close_cash_register(
    request: Request,
    register_id: UUID = Path(..., description="ID de la caja registradora"),
    close_data: CashRegisterClose = ...,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ADMIN_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Cerrar caja registradora con arqueo.

    - **counted_amount**: Monto contado
    - **include_off_register**: Incluir ventas fuera de caja pendientes
    - **confirm_pending_consumptions**: Confirmar la regla de consumos pendientes

    Errores:
    - 400 `CAJA_NO_ABIERTA`
    - 409 `CIERRE_REQUIERE_DECISION_FUERA_CAJA`
    - 409 `CIERRE_CONSUMOS_PENDIENTES_BLOQUEADO`
    - 409 `CIERRE_REQUIERE_CONFIRMACION_CONSUMOS`
    """
    service = CashClosingService(db)
    return service.close_register_manually(
        tenant_id=auth_context.tenant_id,
        register_id=register_id,
        close_data=close_data,
        acting_user_id=auth_context.user_id,
        context=RequestContext.from_request(request)
    )


@cash_registers_router.post("/automatic-closing/sweep", response_model=SweepResult)
async def run_automatic_closing_sweep(
    request: Request,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ADMIN_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Evaluar el cierre automático en todos los PDV activos del tenant.

    Pensado para operaciones sin tráfico por request; es idempotente.
    """
    service = AutomaticClosingService(db)
    return service.run_sweep(
        tenant_id=auth_context.tenant_id,
        context=RequestContext.from_request(request)
    )


@cash_registers_router.get("/closings", response_model=CashClosingList)
async def get_closings(
    pdv_id: Optional[UUID] = Query(None, description="Filtrar por PDV"),
    limit: int = Query(100, ge=1, le=1000, description="Límite de resultados"),
    offset: int = Query(0, ge=0, description="Offset para paginación"),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(["owner", "admin", "accountant"])),
    db: Session = Depends(get_db)
):
    """Listar cierres de caja, más recientes primero."""
    service = CashClosingService(db)
    return service.get_closings(auth_context.tenant_id, pdv_id, limit, offset)


@cash_registers_router.get("/closings/{closing_id}", response_model=CashClosingOut)
async def get_closing(
    closing_id: UUID = Path(..., description="ID del cierre"),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(["owner", "admin", "accountant"])),
    db: Session = Depends(get_db)
):
    """Detalle de un cierre de caja."""
    service = CashClosingService(db)
    return service.get_closing(auth_context.tenant_id, closing_id)


@cash_registers_router.get("/off-register", response_model=OffRegisterList)
async def list_off_register_sales(
    pdv_id: UUID = Query(..., description="ID del punto de venta"),
    status_filter: Optional[OffRegisterStatusFilter] = Query(None, alias="status", description="Estado fuera de caja"),
    limit: int = Query(100, ge=1, le=300),
    offset: int = Query(0, ge=0),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ADMIN_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Ventas fuera de caja del PDV.

    Incluye resumen de pendientes (cantidad, total, antigüedad en minutos).
    """
    service = OffRegisterService(db)
    return service.list_off_register_sales(auth_context.tenant_id, pdv_id, status_filter, limit, offset)


@cash_registers_router.post("/off-register/decide", response_model=OffRegisterDecisionResult)
async def decide_off_register_sales(
    decision: OffRegisterDecision,
    request: Request,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ADMIN_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Decisión masiva sobre ventas fuera de caja pendientes.

    - **imputar_a_caja_actual**: 409 `CAJA_CERRADA_REQUIERE_APERTURA` si la caja está
      cerrada y no se pidió abrirla
    - **marcar_solo_balance**
    - **dejar_pendiente**
    """
    service = OffRegisterService(db)
    return service.decide(
        tenant_id=auth_context.tenant_id,
        decision=decision,
        user_id=auth_context.user_id,
        context=RequestContext.from_request(request)
    )


# ===== SALES ROUTER =====

sales_router = APIRouter(prefix="/sales", tags=["Sales"])


@sales_router.post("/confirm", response_model=SaleConfirmResult, status_code=status.HTTP_201_CREATED)
async def confirm_sale(
    sale_data: SaleConfirm,
    request: Request,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(OPERATOR_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Confirmar venta.

    La caja del PDV decide primero si la venta se admite; con la caja cerrada
    puede responder 409 pidiendo abrirla o registrar fuera de caja.
    """
    service = POSSaleService(db)
    admission, transaction = service.confirm_sale(
        tenant_id=auth_context.tenant_id,
        sale_data=sale_data,
        user_id=auth_context.user_id,
        context=RequestContext.from_request(request)
    )
    if transaction is None:
        return decision_required_response(admission)
    return SaleConfirmResult(
        transaction=POSTransactionOut.model_validate(transaction),
        register_opened_now=admission.register_opened_now
    )
