"""ORM model registry — import all models so Alembic autogenerate discovers them."""

from analytics_engine.models.analytics_query import AnalyticsQuery
from analytics_engine.models.base import Base
from analytics_engine.models.export_job import ExportJob, ExportStatus

__all__ = [
    "AnalyticsQuery",
    "Base",
    "ExportJob",
    "ExportStatus",
]
