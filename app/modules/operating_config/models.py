from app.database.database import Base
from sqlalchemy import Column, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from app.common.mixins import TenantMixin, TimestampMixin


class OperatingConfigOverride(Base, TenantMixin, TimestampMixin):
    """
    Override de configuración operativa.

    pdv_id NULL = override global del tenant; con pdv_id = override del punto de venta.
    Sólo contiene las claves explícitamente configuradas.
    """
    __tablename__ = "operating_config_overrides"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    pdv_id = Column(UUID(as_uuid=True), ForeignKey("pdvs.id"), nullable=True, index=True)
    config = Column(JSON, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("tenant_id", "pdv_id", name="uq_operating_config_tenant_pdv"),
    )
