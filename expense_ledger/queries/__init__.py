"""Registry and summary queries package."""

from expense_ledger.queries.documents import DocumentItemsView, DocumentQueryService
from expense_ledger.queries.registries import RegistryService, normalize_entity_name
from expense_ledger.queries.summaries import (
    MonthCommitment,
    MonthSummary,
    SummaryService,
    future_commitments,
    month_summary,
)

__all__ = [
    "DocumentItemsView",
    "DocumentQueryService",
    "MonthCommitment",
    "MonthSummary",
    "RegistryService",
    "SummaryService",
    "future_commitments",
    "month_summary",
    "normalize_entity_name",
]
