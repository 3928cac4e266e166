from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from typing import Literal, Optional
from uuid import UUID

from app.database.database import get_db
from app.modules.auth.dependencies import AuthDependencies
from app.modules.auth.schemas import AuthContext
from app.modules.audit.service import RequestContext
from app.modules.operating_config import service
from app.modules.operating_config.schemas import OperatingConfigOut, OperatingConfigUpdate

operating_config_router = APIRouter(prefix="/operating-config", tags=["Operating Config"])


@operating_config_router.get("", response_model=OperatingConfigOut)
def get_operating_config(
    scope: Literal["empresa", "pv"] = Query("empresa", description="Alcance: empresa o pv"),
    pdv_id: Optional[UUID] = Query(None, description="ID del punto de venta (scope = pv)"),
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(["owner", "admin"]))
):
    """
    Obtener configuración operativa.

    Devuelve el override guardado en el alcance, la configuración efectiva
    resuelta y los valores por defecto.
    """
    return service.get_operating_config(db, auth_context.tenant_id, scope, pdv_id)


@operating_config_router.put("", response_model=OperatingConfigOut)
def update_operating_config(
    payload: OperatingConfigUpdate,
    request: Request,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(["owner", "admin"]))
):
    """
    Guardar configuración operativa.

    Sólo se sobrescriben las claves enviadas; el resto del override se mantiene.
    """
    return service.update_operating_config(
        db, auth_context.tenant_id, payload,
        user_id=auth_context.user_id,
        context=RequestContext.from_request(request)
    )
