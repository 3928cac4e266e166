from typing import Optional
from uuid import UUID
from sqlalchemy.orm import Session

from app.modules.auth.models import UserCompany
from app.modules.auth.schemas import UserRole


def get_user_role(db: Session, user_id: Optional[UUID], tenant_id: UUID) -> Optional[UserRole]:
    """
    Rol del usuario en la empresa indicada.

    El identificador de rol es el propio nombre del rol (owner, admin, cashier...),
    que es lo que se lista en `caja.apertura_roles_permitidos`.
    """
    if not user_id:
        return None

    membership = db.query(UserCompany).filter(
        UserCompany.user_id == user_id,
        UserCompany.company_id == tenant_id,
        UserCompany.is_active == True
    ).first()

    if not membership:
        return None

    return UserRole(
        user_id=membership.user_id,
        role_id=membership.role,
        role_name=membership.role.lower()
    )
