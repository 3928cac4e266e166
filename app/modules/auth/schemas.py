from pydantic import BaseModel
from typing import Optional, List
from uuid import UUID
from datetime import datetime

class UserCompanyOut(BaseModel):
    id: UUID
    company_id: UUID
    role: str
    is_active: bool
    joined_at: datetime
    company_name: str

    class Config:
        from_attributes = True

class UserRole(BaseModel):
    """Rol operativo de un usuario dentro de un tenant."""
    user_id: UUID
    role_id: str
    role_name: str

class AuthContext(BaseModel):
    user_id: UUID
    tenant_id: Optional[UUID] = None
    user_role: Optional[str] = None
    companies: List[UserCompanyOut] = []
