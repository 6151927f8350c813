"""Audit table model."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.sqlstore.database import MONITOR_SCHEMA, Base


class AutoScalerMonitor(Base):
    """One capacity change requested by the autoscaler."""

    __tablename__ = "AutoScalerMonitor"
    __table_args__ = {"schema": MONITOR_SCHEMA}

    id: Mapped[int] = mapped_column("Id", Integer, primary_key=True, autoincrement=True)
    pool_name: Mapped[str] = mapped_column("ElasticPoolName", String(100), nullable=False)
    inserted_at: Mapped[datetime] = mapped_column(
        "InsertedAt",
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    current_capacity: Mapped[float] = mapped_column(
        "CurrentSLO", Numeric(10, 2, asdecimal=False), nullable=False
    )
    requested_capacity: Mapped[float] = mapped_column(
        "RequestedSLO", Numeric(10, 2, asdecimal=False), nullable=False
    )
    usage_info: Mapped[Optional[str]] = mapped_column("UsageInfo", Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column("Notes", String(1000), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<AutoScalerMonitor(pool={self.pool_name}, "
            f"{self.current_capacity} -> {self.requested_capacity})>"
        )
