"""
Contexto de empresa por request (header X-Company-ID)
"""
from uuid import UUID
import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

COMPANY_HEADER = "X-Company-ID"
EMPRESA_REQUERIDA = "EMPRESA_REQUERIDA"
EMPRESA_INVALIDA = "EMPRESA_INVALIDA"


def _company_error(code: str, mensaje: str) -> JSONResponse:
    # mismo cuerpo que CajaDomainError
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": {"error": code, "mensaje": mensaje}}
    )


class TenantMiddleware(BaseHTTPMiddleware):
    """
    Exige `X-Company-ID` en las rutas de la API y deja el UUID de la empresa
    en `request.state.tenant_id`. La respuesta lo devuelve en `X-Tenant-ID`.

    La raíz, la documentación y `/health` no llevan empresa; tampoco los
    preflight CORS.
    """

    EXEMPT_PREFIXES = ("/docs", "/redoc", "/openapi.json", "/health")

    def _is_exempt(self, request: Request) -> bool:
        path = request.url.path
        return request.method == "OPTIONS" or path == "/" or path.startswith(self.EXEMPT_PREFIXES)

    async def dispatch(self, request: Request, call_next):
        if self._is_exempt(request):
            return await call_next(request)

        raw = request.headers.get(COMPANY_HEADER)
        if not raw:
            return _company_error(EMPRESA_REQUERIDA, f"Falta el header {COMPANY_HEADER}")
        try:
            tenant_id = UUID(raw)
        except ValueError:
            logger.warning(f"{COMPANY_HEADER} inválido en {request.url.path}: {raw!r}")
            return _company_error(EMPRESA_INVALIDA, f"{COMPANY_HEADER} debe ser un UUID válido")

        request.state.tenant_id = tenant_id
        response = await call_next(request)
        response.headers["X-Tenant-ID"] = str(tenant_id)
        return response
