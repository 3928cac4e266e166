"""
Módulo POS (Point of Sale) - Caja

Este módulo maneja el ciclo de vida de la caja por punto de venta:

ENTIDADES PRINCIPALES:
- CashRegister: Caja activa del PDV (física o virtual) con apertura/cierre
- CashClosing: Arqueo de un período (manual o automático)
- AutomaticClosingControl: Registro único por (caja, fecha operativa, hora objetivo)
- POSTransaction: Ventas y cobros de consumos, dentro o fuera de caja

FUNCIONALIDADES:
- Admisión de ventas / consumos con la caja cerrada (abrir, fuera de caja, bloquear, preguntar)
- Apertura manual, por hora programada o con la primera venta
- Cierre manual con arqueo y cierre automático idempotente
- Conciliación de ventas fuera de caja

REGLAS DE NEGOCIO:
- Una sola caja activa por PDV
- Una caja abierta siempre tiene fecha de apertura; una cerrada tiene monto inicial 0
- Como máximo un cierre automático por (caja, fecha operativa, hora objetivo)

SEGURIDAD:
- owner/admin: Apertura, cierre, ajustes y decisiones fuera de caja
- seller/cashier: Ventas y consumos
- accountant: Consulta de cierres
"""

from .routers import cash_registers_router, sales_router

__all__ = ["cash_registers_router", "sales_router"]
