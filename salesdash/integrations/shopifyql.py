"""
ShopifyQL Analytics Client

Runs ShopifyQL queries through the Shopify Admin GraphQL endpoint and
returns the result as an AnalyticsTable. Results are cached per
``{api_version}:{query_text}`` in an injected TTL cache.

Result rows arrive either as positional arrays or as objects keyed by column
name; both are wrapped so callers read every cell through
``AnalyticsTable.cell``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import httpx
import structlog

from salesdash.config.settings import ShopifySettings
from salesdash.core.errors import AnalyticsQueryError
from salesdash.integrations.base import BaseIntegration, body_excerpt

logger = structlog.get_logger(__name__)

SHOPIFYQL_DOCUMENT = """query RunShopifyQL($query: String!) {
  shopifyqlQuery(query: $query) {
    parseErrors
    tableData {
      columns {
        name
        displayName
        dataType
        subType
      }
      rows
    }
  }
}"""


@dataclass(frozen=True)
class PositionalRow:
    values: Tuple[Any, ...]


@dataclass(frozen=True)
class NamedRow:
    mapping: Mapping[str, Any]


AnalyticsRow = Union[PositionalRow, NamedRow]


def wrap_row(raw: Any) -> Optional[AnalyticsRow]:
    if isinstance(raw, Mapping):
        return NamedRow(dict(raw))
    if isinstance(raw, (list, tuple)):
        return PositionalRow(tuple(raw))
    return None


@dataclass
class AnalyticsTable:
    """Parsed ShopifyQL ``tableData``"""

    columns: List[Dict[str, Any]] = field(default_factory=list)
    rows: List[AnalyticsRow] = field(default_factory=list)
    column_index: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_table_data(cls, table_data: Optional[Mapping[str, Any]]) -> "AnalyticsTable":
        table_data = table_data or {}
        columns = [c for c in (table_data.get("columns") or []) if isinstance(c, Mapping)]
        column_index: Dict[str, int] = {}
        for idx, column in enumerate(columns):
            name = str(column.get("name") or "").strip()
            if name:
                column_index[name] = idx
        raw_rows = table_data.get("rows") or []
        rows = [row for row in (wrap_row(raw) for raw in raw_rows) if row is not None]
        return cls(columns=[dict(c) for c in columns], rows=rows, column_index=column_index)

    def cell(self, row: AnalyticsRow, column: str) -> Any:
        if isinstance(row, NamedRow):
            return row.mapping.get(column)
        idx = self.column_index.get(column)
        if idx is None or idx >= len(row.values):
            return None
        return row.values[idx]

    def has_column(self, column: str) -> bool:
        return column in self.column_index

    def pick_column(self, candidates: Sequence[str]) -> str:
        """First candidate present in the table, or "" when none is."""
        for name in candidates:
            if name in self.column_index:
                return name
        return ""

    def find_column(self, prefix: str, contains: str = "") -> str:
        for name in self.column_index:
            if name.startswith(prefix) and contains in name:
                return name
        return ""

    def __len__(self) -> int:
        return len(self.rows)


class ShopifyQLClient(BaseIntegration):
    """
    ShopifyQL query runner

    Usage:
        client = ShopifyQLClient(settings.shopify, cache)
        table = await client.query("FROM sales SHOW total_sales GROUP BY day SINCE 2026-01-01 UNTIL 2026-02-01")
        if table is None:
            ...  # not configured
    """

    source_name = "shopifyql"

    def __init__(
        self,
        settings: ShopifySettings,
        cache,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        super().__init__(http_client, timeout)
        self.settings = settings
        self.cache = cache

    @property
    def is_configured(self) -> bool:
        return self.settings.is_configured

    @property
    def endpoint(self) -> str:
        return f"https://{self.settings.store_domain}/admin/api/{self.settings.analytics_api_version}/graphql.json"

    def cache_key(self, query_text: str) -> str:
        return f"{self.settings.analytics_api_version}:{query_text}"

    async def query(self, query_text: str) -> Optional[AnalyticsTable]:
        """
        Run a ShopifyQL query.

        Returns:
            AnalyticsTable, or None when Shopify is not configured

        Raises:
            AnalyticsQueryError: non-2xx response, GraphQL errors or parse errors
        """
        if not self.is_configured:
            return None

        key = self.cache_key(query_text)
        cached = await self.cache.get(key)
        if cached is not None:
            return AnalyticsTable.from_table_data(cached)

        try:
            async with self.session() as client:
                response = await client.post(
                    self.endpoint,
                    headers={
                        "X-Shopify-Access-Token": self.settings.token,
                        "Content-Type": "application/json",
                    },
                    json={"query": SHOPIFYQL_DOCUMENT, "variables": {"query": query_text}},
                )
        except httpx.HTTPError as e:
            raise AnalyticsQueryError(f"ShopifyQL request failed: {e}") from e

        if response.status_code >= 400:
            raise AnalyticsQueryError(
                f"ShopifyQL request failed ({response.status_code}): {body_excerpt(response)}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise AnalyticsQueryError("ShopifyQL response was not JSON") from e

        errors = payload.get("errors") if isinstance(payload, dict) else None
        if isinstance(errors, list) and errors:
            messages = "; ".join(str(err.get("message", err)) if isinstance(err, dict) else str(err) for err in errors)
            raise AnalyticsQueryError(f"ShopifyQL GraphQL error: {messages}")

        result = ((payload or {}).get("data") or {}).get("shopifyqlQuery") or {}
        parse_errors = result.get("parseErrors") or []
        if isinstance(parse_errors, list) and parse_errors:
            raise AnalyticsQueryError(f"ShopifyQL parse error: {'; '.join(str(e) for e in parse_errors)}")

        table_data = result.get("tableData") or {}
        table = AnalyticsTable.from_table_data(table_data)
        await self.cache.set(key, {"columns": table.columns, "rows": table_data.get("rows") or []})

        logger.debug("ShopifyQL query executed", rows=len(table), columns=list(table.column_index))
        return table
