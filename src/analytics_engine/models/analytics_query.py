"""AnalyticsQuery model — a saved, reusable query definition."""

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from analytics_engine.models.base import Base, JSONType, TimestampMixin, UUIDMixin
from analytics_engine.schemas.query import QueryDefinition


class AnalyticsQuery(Base, UUIDMixin, TimestampMixin):
    """Persisted query definition.

    List-valued parts of the definition are stored as JSON documents exactly
    as the ``QueryDefinition`` schema serializes them.
    """

    __tablename__ = "analytics_queries"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    query_type: Mapped[str] = mapped_column(String(20), nullable=False)
    collection: Mapped[str] = mapped_column(String(200), nullable=False)
    fields: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    filters: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    joins: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    aggregations: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    group_by: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    sort: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    row_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    row_offset: Mapped[int | None] = mapped_column(Integer, nullable=True)
    parameters: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        Index("ix_analytics_queries_name", "name"),
        Index("ix_analytics_queries_query_type", "query_type"),
    )

    def to_definition(self) -> QueryDefinition:
        """Rebuild the ``QueryDefinition`` this record was saved from."""
        return QueryDefinition(
            name=self.name,
            description=self.description,
            type=self.query_type,
            collection=self.collection,
            fields=self.fields or [],
            filters=self.filters or [],
            joins=self.joins or [],
            aggregations=self.aggregations or [],
            group_by=self.group_by or [],
            sort=self.sort or [],
            limit=self.row_limit,
            offset=self.row_offset,
            parameters=self.parameters or {},
            created_by=self.created_by,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def apply_definition(self, definition: QueryDefinition) -> None:
        """Copy every definition field onto this record."""
        data = definition.model_dump(mode="json")
        self.name = definition.name
        self.description = definition.description
        self.query_type = definition.type.value
        self.collection = definition.collection
        self.fields = data["fields"]
        self.filters = data["filters"]
        self.joins = data["joins"]
        self.aggregations = data["aggregations"]
        self.group_by = data["group_by"]
        self.sort = data["sort"]
        self.row_limit = definition.limit
        self.row_offset = definition.offset
        self.parameters = data["parameters"]
