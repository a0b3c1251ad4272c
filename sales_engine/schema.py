"""
Schema probe: discovers which optional order columns this deployment has.

Not every deployment of the orders relation carries the same columns
(`amount_cents` and the provider fields were added over time).
The probe runs a `limit 1` trial select and drops columns until the select
succeeds, producing a `SchemaCapabilities` value that is negotiated once per
session and passed down to every fetch.
"""
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

from sales_engine.exceptions import (
    MissingColumnError,
    RecordSourceError,
    SourceUnavailableError,
)
from sales_engine.observability import get_logger
from sales_engine.source import OrderFilter, RecordQuery, RecordSource

logger = get_logger(__name__)

MANDATORY_COLUMNS: Tuple[str, ...] = ("id", "status", "created_at")
AMOUNT_COLUMN = "amount_cents"
PROVIDER_COLUMNS: Tuple[str, ...] = ("payment_provider", "provider")

# Optional columns in the order they were introduced; the newest is dropped first
DEFAULT_CHART_COLUMNS: Tuple[str, ...] = MANDATORY_COLUMNS + PROVIDER_COLUMNS + (AMOUNT_COLUMN,)


@dataclass(frozen=True)
class SchemaCapabilities:
    """The column set known to be selectable, or the "source unavailable" signal."""
    columns: Tuple[str, ...] = MANDATORY_COLUMNS
    available: bool = True

    @classmethod
    def unavailable(cls) -> "SchemaCapabilities":
        return cls(columns=MANDATORY_COLUMNS, available=False)

    def has(self, column: str) -> bool:
        return column in self.columns

    @property
    def has_amount(self) -> bool:
        return self.has(AMOUNT_COLUMN)

    @property
    def has_provider(self) -> bool:
        return any(self.has(column) for column in PROVIDER_COLUMNS)

    @property
    def optional_columns(self) -> Tuple[str, ...]:
        return tuple(c for c in self.columns if c not in MANDATORY_COLUMNS)

    def droppable_column(self, named: Optional[str] = None) -> Optional[str]:
        """
        Column to drop after a missing-column error.

        The column named by the error if it is optional and selected,
        otherwise the most recently added optional column.
        """
        optional = self.optional_columns
        if named and named in optional:
            return named
        return optional[-1] if optional else None

    def without(self, column: str) -> "SchemaCapabilities":
        return SchemaCapabilities(
            columns=tuple(c for c in self.columns if c != column),
            available=self.available,
        )


class SchemaProbe:
    """
    Negotiates the selectable column set by trial queries.

    Usage:
        probe = SchemaProbe(source)
        capabilities = await probe.probe(DEFAULT_CHART_COLUMNS)
        if capabilities.has_amount:
            ...
    """

    def __init__(self, source: RecordSource):
        self.source = source
        self._memo: Dict[Tuple[Tuple[str, ...], OrderFilter], SchemaCapabilities] = {}
        self.trial_queries = 0

    def invalidate(self) -> None:
        """Forget negotiated capabilities (e.g. after a migration)."""
        self._memo.clear()

    async def probe(
        self,
        desired_columns: Sequence[str] = DEFAULT_CHART_COLUMNS,
        filters: Optional[OrderFilter] = None,
    ) -> SchemaCapabilities:
        """
        Return the largest prefix-compatible subset of desired_columns that can be selected.

        Mandatory columns are always requested. A failure that is not a
        missing column returns SchemaCapabilities.unavailable() and is not
        memoized, so the next session retries.
        """
        filters = filters or OrderFilter()
        columns = tuple(dict.fromkeys(tuple(MANDATORY_COLUMNS) + tuple(desired_columns)))
        memo_key = (columns, filters)
        if memo_key in self._memo:
            return self._memo[memo_key]

        capabilities = SchemaCapabilities(columns=columns)

        while True:
            self.trial_queries += 1
            try:
                await self.source.select(
                    RecordQuery(columns=capabilities.columns, filters=filters, limit=1)
                )
            except MissingColumnError as e:
                column = capabilities.droppable_column(e.column)
                if column is None:
                    logger.warning(
                        "Mandatory order columns are not selectable",
                        extra={"error": str(e)},
                    )
                    return SchemaCapabilities.unavailable()
                logger.debug(f"Column '{column}' not available, degrading select list")
                capabilities = capabilities.without(column)
                continue
            except SourceUnavailableError as e:
                logger.warning("Orders relation unavailable", extra={"error": str(e)})
                return SchemaCapabilities.unavailable()
            except RecordSourceError as e:
                logger.warning("Schema probe failed", extra={"error": str(e)})
                return SchemaCapabilities.unavailable()
            break

        if capabilities.columns != columns:
            logger.info(
                "Order schema degraded",
                extra={"columns": ",".join(capabilities.columns)},
            )
        self._memo[memo_key] = capabilities
        return capabilities
