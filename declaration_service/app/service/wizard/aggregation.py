# Folds selected source declarations into the payload of an existing-based declaration
import logging
from decimal import Decimal
from typing import List, Optional, Sequence

from pydantic import BaseModel, Field

from declaration_service.app.models import DeclarationDB, SourceDeclarationSummaryDB
from declaration_service.app.service.enums import DeclarationStatus, RiskLevel, Unit
from declaration_service.app.service.exceptions import AggregationFailedError
from declaration_service.app.service.interfaces.declaration_store import AbstractDeclarationStore
from declaration_service.app.service.wizard.draft import LineItem

logger = logging.getLogger(__name__)

# Sources in these statuses were never accepted and cannot back a new declaration.
INELIGIBLE_SOURCE_STATUSES = frozenset({DeclarationStatus.DRAFT, DeclarationStatus.REJECTED})

PRODUCT_NAMES_IN_SUMMARY = 3


class ProductSummary(BaseModel):
    product_name: str
    hsn_code: Optional[str] = None
    quantity: Optional[Decimal] = None
    unit: Optional[Unit] = None


class AggregatedPayload(BaseModel):
    linked_source_ids: List[int]
    source_summaries: List[SourceDeclarationSummaryDB] = Field(default_factory=list)
    items: List[LineItem] = Field(default_factory=list)
    product: ProductSummary
    risk_level: RiskLevel = RiskLevel.MEDIUM


def summarize_products(items: Sequence[LineItem]) -> ProductSummary:
    """
    Listing summary of a declaration's items: the first names joined with
    ", " (plus "and N more"), HSN code and unit of the first item, summed quantity.
    """
    if not items:
        return ProductSummary(product_name="Unnamed Product")
    names = [item.product_name for item in items]
    product_name = ", ".join(names[:PRODUCT_NAMES_IN_SUMMARY])
    if len(names) > PRODUCT_NAMES_IN_SUMMARY:
        product_name += f" and {len(names) - PRODUCT_NAMES_IN_SUMMARY} more"
    return ProductSummary(
        product_name=product_name,
        hsn_code=items[0].hsn_code or None,
        quantity=sum((item.quantity or Decimal(0) for item in items), Decimal(0)),
        unit=items[0].unit,
    )


def item_from_source(source: DeclarationDB) -> LineItem:
    first_item = source.items[0] if source.items else None
    return LineItem(
        hsn_code=source.hsn_code or "",
        product_name=source.product_name,
        scientific_name=first_item.scientific_name if first_item else None,
        quantity=source.quantity,
        unit=source.unit or Unit.KG,
        source_id=source.id,
        rm_id=first_item.rm_id if first_item else None,
        sku_code=first_item.sku_code if first_item else None,
    )


def summary_from_source(source: DeclarationDB) -> SourceDeclarationSummaryDB:
    return SourceDeclarationSummaryDB(
        declaration_id=source.id,
        product_name=source.product_name,
        hsn_code=source.hsn_code,
        quantity=source.quantity,
        unit=source.unit,
        status=source.status,
        risk_level=source.risk_level,
        eudr_reference_number=source.eudr_reference_number,
        eudr_verification_number=source.eudr_verification_number,
    )


class AggregationResolver:
    def __init__(self, store: AbstractDeclarationStore):
        self.store = store

    async def _load_sources(self, source_declaration_ids: Sequence[int]) -> List[DeclarationDB]:
        ids = list(source_declaration_ids)
        if not ids:
            raise AggregationFailedError(
                AggregationFailedError.NO_SOURCES_SELECTED,
                "at least one source declaration must be selected",
            )
        duplicates = sorted({source_id for source_id in ids if ids.count(source_id) > 1})
        if duplicates:
            raise AggregationFailedError(
                AggregationFailedError.DUPLICATE_SOURCES,
                f"source declaration(s) selected more than once: {', '.join(map(str, duplicates))}",
                duplicates,
            )

        sources = await self.store.list_by_ids(ids)
        found = {source.id for source in sources}
        missing = [source_id for source_id in ids if source_id not in found]
        if missing:
            raise AggregationFailedError(
                AggregationFailedError.SOURCES_NOT_FOUND,
                f"source declaration(s) not found: {', '.join(map(str, missing))}",
                missing,
            )
        return sources

    async def items_for_sources(self, source_declaration_ids: Sequence[int]) -> List[LineItem]:
        """Line items pre-filled from the selected sources, one per source."""
        if not source_declaration_ids:
            return []
        sources = await self._load_sources(source_declaration_ids)
        return [item_from_source(source) for source in sources]

    async def resolve(
        self,
        source_declaration_ids: Sequence[int],
        draft_items: Sequence[LineItem] = (),
    ) -> AggregatedPayload:
        """
        Resolves the selected sources into the link list, source summaries,
        product summary and inherited risk level of the new declaration.
        The valid draft items become the declaration items; the per-source items
        are used only when the draft has no valid item at all.
        """
        sources = await self._load_sources(source_declaration_ids)

        ineligible = [source.id for source in sources if source.status in INELIGIBLE_SOURCE_STATUSES]
        if ineligible:
            raise AggregationFailedError(
                AggregationFailedError.INELIGIBLE_SOURCES,
                f"source declaration(s) in draft or rejected status cannot be used: {', '.join(map(str, ineligible))}",
                ineligible,
            )

        items = [item for item in draft_items if item.is_valid()] or [item_from_source(s) for s in sources]
        # The primary (first selected) source carries the risk level over.
        risk_level = sources[0].risk_level or RiskLevel.MEDIUM

        logger.info(f"Aggregated {len(sources)} source declaration(s): {[source.id for source in sources]}.")
        return AggregatedPayload(
            linked_source_ids=[source.id for source in sources],
            source_summaries=[summary_from_source(source) for source in sources],
            items=items,
            product=summarize_products(items),
            risk_level=risk_level,
        )
