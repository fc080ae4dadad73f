"""Warehouse collaborators that execute compiled queries."""

from analytics_engine.lib.warehouse.base import Warehouse
from analytics_engine.lib.warehouse.sqlalchemy_warehouse import SQLAlchemyWarehouse

__all__ = ["SQLAlchemyWarehouse", "Warehouse"]
