"""SQL Server collaborators for the autoscaler."""

from src.sqlstore.database import Base, create_engine
from src.sqlstore.models import AutoScalerMonitor
from src.sqlstore.providers import (
    SqlCooldownProvider,
    SqlMetricsProvider,
    SqlMonitorSink,
    SqlTransitionProvider,
    is_transient_db_error,
)

__all__ = [
    "Base",
    "create_engine",
    "AutoScalerMonitor",
    "SqlCooldownProvider",
    "SqlMetricsProvider",
    "SqlMonitorSink",
    "SqlTransitionProvider",
    "is_transient_db_error",
]
