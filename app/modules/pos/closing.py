"""
Piezas compartidas del cierre de caja (manual y automático).

Nada de este módulo hace commit: todas las funciones corren dentro de la
transacción del cierre que las invoca.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import and_, case, false, func, or_
from sqlalchemy.orm import Session

from app.common.exceptions import CajaDomainError, CAJA_NO_ABIERTA, CAJA_YA_ABIERTA
from app.common.mixins import utc_now
from app.modules.pos.models import (
    CashRegister, CashClosing, POSTransaction, TransactionStatus, OffRegisterStatus
)
from app.modules.pos.schemas import PeriodTotals, OffRegisterPending

# Nombres de medio de pago (ILIKE, sin distinguir mayúsculas)
CASH_PATTERNS = ("efectivo", "cash")
CARD_PATTERNS = ("tarjeta", "card")
TRANSFER_PATTERNS = ("transferencia", "transfer")


def _matches(patterns):
    return or_(*[POSTransaction.payment_method_name.ilike(f"%{p}%") for p in patterns])


def _bucket_sum(patterns):
    return func.coalesce(func.sum(case((_matches(patterns), POSTransaction.total), else_=0)), 0)


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))


def compute_period_totals(db: Session, register: CashRegister) -> PeriodTotals:
    """
    Totales del período abierto de la caja.

    Incluye las ventas confirmadas desde la apertura y las ventas fuera de
    caja ya imputadas a esta caja que aún no pertenecen a ningún cierre.
    Los medios de pago no reconocidos sólo suman al total general.
    """
    in_period = and_(
        POSTransaction.off_register == False,
        POSTransaction.confirmed_at >= register.opened_at
    ) if register.opened_at is not None else false()

    assigned_off_register = and_(
        POSTransaction.off_register == True,
        POSTransaction.off_register_status == OffRegisterStatus.ASSIGNED.value,
        POSTransaction.reconciled_closing_id.is_(None)
    )

    total_sales, count, total_cash, total_card, total_transfer = db.query(
        func.coalesce(func.sum(POSTransaction.total), 0),
        func.count(POSTransaction.id),
        _bucket_sum(CASH_PATTERNS),
        _bucket_sum(CARD_PATTERNS),
        _bucket_sum(TRANSFER_PATTERNS)
    ).filter(
        POSTransaction.tenant_id == register.tenant_id,
        POSTransaction.cash_register_id == register.id,
        POSTransaction.status == TransactionStatus.CONFIRMED.value,
        or_(in_period, assigned_off_register)
    ).one()

    return PeriodTotals(
        total_sales=_money(total_sales),
        total_cash=_money(total_cash),
        total_card=_money(total_card),
        total_transfer=_money(total_transfer),
        transaction_count=int(count or 0)
    )


def _pending_off_register_filter(tenant_id: UUID, pdv_id: UUID):
    return and_(
        POSTransaction.tenant_id == tenant_id,
        POSTransaction.pdv_id == pdv_id,
        POSTransaction.status == TransactionStatus.CONFIRMED.value,
        POSTransaction.off_register == True,
        POSTransaction.reconciled_at.is_(None),
        or_(
            POSTransaction.off_register_status.is_(None),
            POSTransaction.off_register_status == OffRegisterStatus.PENDING.value
        )
    )


def pending_off_register(db: Session, tenant_id: UUID, pdv_id: UUID) -> OffRegisterPending:
    """Ventas fuera de caja confirmadas y aún no conciliadas del PDV."""
    count, total = db.query(
        func.count(POSTransaction.id),
        func.coalesce(func.sum(POSTransaction.total), 0)
    ).filter(_pending_off_register_filter(tenant_id, pdv_id)).one()
    return OffRegisterPending(count=int(count or 0), total=_money(total))


def write_closing(db: Session, register: CashRegister, operating_day: date, closed_at: datetime,
                  totals: PeriodTotals, expected_amount: Decimal, counted_amount: Decimal,
                  off_register: OffRegisterPending, include_off_register: bool,
                  notes: Optional[str], closed_by: Optional[UUID], is_automatic: bool) -> CashClosing:
    """
    Registrar el arqueo.

    Si ya existe un cierre para (PDV, caja, fecha operativa) se actualiza
    en lugar de duplicarlo.
    """
    included = off_register if include_off_register else OffRegisterPending()
    values = dict(
        tenant_id=register.tenant_id,
        closed_by=closed_by,
        is_automatic=is_automatic,
        opened_at=register.opened_at,
        closed_at=closed_at,
        opening_float=_money(register.opening_float),
        expected_amount=_money(expected_amount),
        counted_amount=_money(counted_amount),
        variance=_money(counted_amount) - _money(expected_amount),
        total_sales=totals.total_sales,
        total_cash=totals.total_cash,
        total_card=totals.total_card,
        total_transfer=totals.total_transfer,
        transaction_count=totals.transaction_count + included.count,
        notes=notes,
        include_off_register=include_off_register,
        off_register_included=included.count,
        off_register_total=included.total,
    )

    closing = db.query(CashClosing).filter(
        CashClosing.pdv_id == register.pdv_id,
        CashClosing.cash_register_id == register.id,
        CashClosing.operating_date == operating_day
    ).with_for_update().first()

    if closing is None:
        closing = CashClosing(
            pdv_id=register.pdv_id,
            cash_register_id=register.id,
            operating_date=operating_day,
            **values
        )
        db.add(closing)
    else:
        for key, value in values.items():
            setattr(closing, key, value)

    db.flush()
    return closing


def reconcile_off_register(db: Session, register: CashRegister, closing: CashClosing,
                           include_pending: bool) -> int:
    """
    Marcar como conciliadas las ventas fuera de caja incluidas en el cierre.

    Las ya imputadas a esta caja siempre quedan asociadas al cierre; las
    pendientes sólo si el cierre las incluye. Devuelve cuántas pendientes se
    imputaron.
    """
    now = utc_now()

    db.query(POSTransaction).filter(
        POSTransaction.tenant_id == register.tenant_id,
        POSTransaction.cash_register_id == register.id,
        POSTransaction.off_register == True,
        POSTransaction.off_register_status == OffRegisterStatus.ASSIGNED.value,
        POSTransaction.reconciled_closing_id.is_(None)
    ).update({"reconciled_closing_id": closing.id}, synchronize_session=False)

    if not include_pending:
        return 0

    return db.query(POSTransaction).filter(
        _pending_off_register_filter(register.tenant_id, register.pdv_id)
    ).update({
        "off_register_status": OffRegisterStatus.ASSIGNED.value,
        "reconciled_at": now,
        "reconciled_closing_id": closing.id,
        "cash_register_id": register.id,
    }, synchronize_session=False)


def mark_register_open(db: Session, register: CashRegister, opening_float: Decimal,
                       user_id: Optional[UUID] = None, opened_at: Optional[datetime] = None) -> None:
    """
    Abrir la caja con UPDATE condicional (WHERE is_open = false).

    `opened_at` es el instante con el que se evaluó la apertura; por defecto, ahora.
    """
    now = utc_now()
    opened = db.query(CashRegister).filter(
        CashRegister.id == register.id,
        CashRegister.is_open == False
    ).update({
        "is_open": True,
        "opening_float": _money(opening_float),
        "opened_at": opened_at or now,
        "opened_by": user_id,
        "updated_at": now,
    }, synchronize_session=False)

    if opened != 1:
        raise CajaDomainError(CAJA_YA_ABIERTA, "La caja ya está abierta")
    db.expire(register)


def mark_register_closed(db: Session, register: CashRegister) -> None:
    """Cerrar la caja con UPDATE condicional (WHERE is_open = true): monto a 0, apertura a NULL."""
    closed = db.query(CashRegister).filter(
        CashRegister.id == register.id,
        CashRegister.is_open == True
    ).update({
        "is_open": False,
        "opening_float": 0,
        "opened_at": None,
        "opened_by": None,
        "updated_at": utc_now(),
    }, synchronize_session=False)

    if closed != 1:
        raise CajaDomainError(CAJA_NO_ABIERTA, "La caja no está abierta", status_code=status.HTTP_400_BAD_REQUEST)
    db.expire(register)
