"""User model — the clinic user directory consumed by billing."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing.constants import ROLE_CLINIC_ADMIN, ROLE_MASTER_ADMIN
from billing.utils import now_utc
from .base import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default=ROLE_CLINIC_ADMIN)
    clinic_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc, onupdate=now_utc)

    subscription_status: Mapped["SubscriptionStatus | None"] = relationship(back_populates="user", uselist=False)

    @property
    def is_master_admin(self) -> bool:
        return self.role == ROLE_MASTER_ADMIN
