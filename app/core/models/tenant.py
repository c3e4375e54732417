import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class Tenant(Base):
    """
    Tenant (school organization) in the multi-tenant platform.

    - tenant_id (id): Internal primary key (UUID). Used for all FKs and internal logic.
    - organization_code: External/public human-readable identifier (e.g. SCH-A3K9). Never used as a foreign key.
    """

    __tablename__ = "tenants"
    __table_args__ = {"schema": "core"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_code = Column(String(20), unique=True, nullable=False, index=True)
    organization_name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="ACTIVE")
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    branches = relationship("Branch", back_populates="tenant", cascade="all, delete-orphan")
