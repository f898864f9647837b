import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from church_rbac.database import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    display_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    # Built-in role name or a custom role id (see role_permissions.role).
    role: Mapped[str] = mapped_column(String(64), nullable=False, default="member", index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Per-user overrides on top of role defaults.
    # JSON dict of {"module.action": true/false}.
    # null = use role defaults only.
    custom_permissions: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), default=None)
    custom_permissions_updated_by: Mapped[str | None] = mapped_column(String(36))
    custom_permissions_updated_at: Mapped[datetime | None] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
