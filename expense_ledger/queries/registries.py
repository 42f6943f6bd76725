"""
Category and Entity Registries

Small per-owner lookup lists referenced by obligations. Entities carry a
normalized name (trimmed, lower-cased) so the same counterparty typed with
different casing can be matched.
"""

from typing import Optional

from expense_ledger.models.obligation import Category, Entity, ValidationIssue
from expense_ledger.services.storage import Collection, RecordStore
from expense_ledger.validation import InputValidationError


def normalize_entity_name(name: str) -> str:
    return name.strip().lower()


def _require_name(name: Optional[str], field: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise InputValidationError(
            f"{field.capitalize()} name is required",
            field_errors=[ValidationIssue(
                field="name",
                issue_type="missing",
                message=f"{field.capitalize()} name is required",
                severity="error",
            )],
        )
    return cleaned


class RegistryService:
    """Create, list and delete an owner's categories and entities."""

    def __init__(self, store: RecordStore, owner_id: str):
        self._store = store
        self._owner_id = owner_id

    # =========================================================================
    # CATEGORIES
    # =========================================================================

    async def create_category(self, name: str) -> Category:
        category = Category(owner_id=self._owner_id, name=_require_name(name, "category"))
        await self._store.insert(Collection.CATEGORIES, category.to_record())
        return category

    async def list_categories(self) -> list[Category]:
        """The owner's categories ordered by name."""
        records = await self._store.select(Collection.CATEGORIES, self._owner_id)
        categories = [Category.from_record(record) for record in records]
        return sorted(categories, key=lambda c: c.name.lower())

    async def delete_category(self, category_id: str) -> bool:
        return await self._store.delete(Collection.CATEGORIES, self._owner_id, str(category_id))

    # =========================================================================
    # ENTITIES
    # =========================================================================

    async def create_entity(self, name: str) -> Entity:
        cleaned = _require_name(name, "entity")
        entity = Entity(
            owner_id=self._owner_id,
            name=cleaned,
            normalized_name=normalize_entity_name(cleaned),
        )
        await self._store.insert(Collection.ENTITIES, entity.to_record())
        return entity

    async def list_entities(self) -> list[Entity]:
        """The owner's entities ordered by normalized name."""
        records = await self._store.select(Collection.ENTITIES, self._owner_id)
        entities = [Entity.from_record(record) for record in records]
        return sorted(entities, key=lambda e: e.normalized_name)

    async def find_entity(self, name: str) -> Optional[Entity]:
        """Look an entity up by name, ignoring case and surrounding spaces."""
        records = await self._store.select(
            Collection.ENTITIES,
            self._owner_id,
            normalized_name=normalize_entity_name(name),
        )
        return Entity.from_record(records[0]) if records else None

    async def delete_entity(self, entity_id: str) -> bool:
        return await self._store.delete(Collection.ENTITIES, self._owner_id, str(entity_id))
