"""
Errores de dominio de la operativa de caja.

Todos se propagan hasta el router como HTTPException con un código estable
(`error`) y un mensaje legible (`mensaje`). No se reintentan automáticamente.
"""
from typing import Any, Dict, Optional
from fastapi import HTTPException, status


class CajaDomainError(HTTPException):
    """Error accionable por el usuario con código de máquina estable."""

    def __init__(self, code: str, message: str, status_code: int = status.HTTP_409_CONFLICT,
                 extra: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.extra = extra or {}
        super().__init__(
            status_code=status_code,
            detail={"error": code, "mensaje": message, **self.extra}
        )


# ===== CÓDIGOS =====

FUERA_CAJA_DESHABILITADO = "FUERA_CAJA_DESHABILITADO"
CAJA_CERRADA_BLOQUEADA = "CAJA_CERRADA_BLOQUEADA"
CAJA_REQUIERE_MONTO_INICIAL_PRIMERA_VENTA = "CAJA_REQUIERE_MONTO_INICIAL_PRIMERA_VENTA"
CAJA_CERRADA_REQUIERE_DECISION = "CAJA_CERRADA_REQUIERE_DECISION"
CAJA_CERRADA_REQUIERE_APERTURA = "CAJA_CERRADA_REQUIERE_APERTURA"
CIERRE_CONSUMOS_PENDIENTES_BLOQUEADO = "CIERRE_CONSUMOS_PENDIENTES_BLOQUEADO"
CIERRE_REQUIERE_DECISION_FUERA_CAJA = "CIERRE_REQUIERE_DECISION_FUERA_CAJA"
CIERRE_REQUIERE_CONFIRMACION_CONSUMOS = "CIERRE_REQUIERE_CONFIRMACION_CONSUMOS"
PUNTO_VENTA_TIENE_CAJA_ABIERTA = "PUNTO_VENTA_TIENE_CAJA_ABIERTA"
PUNTO_VENTA_NO_ENCONTRADO = "PUNTO_VENTA_NO_ENCONTRADO"
CAJA_YA_ABIERTA = "CAJA_YA_ABIERTA"
CAJA_NO_ABIERTA = "CAJA_NO_ABIERTA"
CAJA_NO_ENCONTRADA = "CAJA_NO_ENCONTRADA"
REGLA_LIQUIDACION_INVALIDA = "REGLA_LIQUIDACION_INVALIDA"


def internal_error() -> HTTPException:
    """Error opaco para fallas de almacenamiento; el detalle queda en el log."""
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Error interno del servidor"
    )
