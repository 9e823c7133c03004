from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import regex

from backends import StorageBackend
from errors import ConflictError, NotFoundError, ValidationError
from periods import local_zone
from schemas import (
    BudgetIn,
    BudgetOut,
    BudgetUpdate,
    CategoryOut,
    CategoryUpdate,
    TransactionIn,
    TransactionOut,
    TransactionUpdate,
    UserOut,
)


DEFAULT_CATEGORIES = ("Groceries", "Takeout", "Utilities", "Electronics", "Other")
MAX_EMOJI_GRAPHEMES = 3
MAX_CATEGORY_NAME_LENGTH = 100

_GRAPHEME = regex.compile(r"\X")


def normalize_category_name(name: Optional[str]) -> str:
    return str(name or "").strip()


def normalize_emoji(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    trimmed = str(value).strip()
    if not trimmed:
        return None
    clusters = _GRAPHEME.findall(trimmed)[:MAX_EMOJI_GRAPHEMES]
    return "".join(clusters) or None


def normalize_transaction_date(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=local_zone())
    return value.astimezone(timezone.utc)


class UserService:
    def __init__(self, backend: StorageBackend, owner_id: str) -> None:
        self.backend = backend
        self.owner_id = owner_id

    def upsert(self, email: Optional[str] = None) -> tuple[UserOut, bool]:
        if not self.owner_id:
            raise ValidationError("Owner id is required")
        return self.backend.upsert_user(self.owner_id, email or None)

    def get(self) -> Optional[UserOut]:
        if not self.owner_id:
            return None
        return self.backend.get_user(self.owner_id)


class CategoryService:
    def __init__(self, backend: StorageBackend, owner_id: str) -> None:
        self.backend = backend
        self.owner_id = owner_id

    def _ensure_defaults(self) -> list[CategoryOut]:
        existing = self.backend.list_categories(self.owner_id)
        if existing:
            return existing
        # A concurrent first read may seed too; duplicates are skipped.
        self.backend.seed_categories(self.owner_id, DEFAULT_CATEGORIES)
        return self.backend.list_categories(self.owner_id)

    def list_all(self) -> list[CategoryOut]:
        return self._ensure_defaults()

    def create(self, name: Optional[str], emoji: Optional[str] = None) -> CategoryOut:
        clean_name = normalize_category_name(name)
        if not clean_name:
            raise ValidationError("Category name is required")
        if len(clean_name) > MAX_CATEGORY_NAME_LENGTH:
            raise ValidationError("Category name is too long")
        clean_emoji = normalize_emoji(emoji)

        self._ensure_defaults()
        if self.backend.find_category(self.owner_id, clean_name.lower()):
            raise ConflictError("Category already exists")
        return self.backend.insert_category(self.owner_id, clean_name, clean_emoji)

    def update(self, category_id: str, changes: CategoryUpdate) -> CategoryOut:
        if "emoji" not in changes.model_fields_set:
            raise ValidationError("Emoji update is required")
        emoji = normalize_emoji(changes.emoji)

        self._ensure_defaults()
        category = self.backend.update_category_emoji(
            self.owner_id, category_id, emoji
        )
        if category is None:
            raise NotFoundError("Category not found")
        return category

    def delete(self, category_id: str) -> CategoryOut:
        self._ensure_defaults()
        removed = self.backend.delete_category(self.owner_id, category_id)
        if removed is None:
            raise NotFoundError("Category not found")
        return removed

    def exists(self, name: Optional[str]) -> bool:
        clean_name = normalize_category_name(name)
        if not clean_name:
            return False
        self._ensure_defaults()
        return self.backend.find_category(self.owner_id, clean_name.lower()) is not None


class BudgetService:
    def __init__(self, backend: StorageBackend, owner_id: str) -> None:
        self.backend = backend
        self.owner_id = owner_id

    def list_all(self) -> list[BudgetOut]:
        return self.backend.list_budgets(self.owner_id)

    def create(self, data: BudgetIn) -> BudgetOut:
        return self.backend.insert_budget(self.owner_id, data.model_dump())

    def update(self, budget_id: str, data: BudgetUpdate) -> BudgetOut:
        changes = data.model_dump(exclude_unset=True)
        budget = self.backend.update_budget(self.owner_id, budget_id, changes)
        if budget is None:
            raise NotFoundError("Budget not found")
        return budget

    def delete(self, budget_id: str) -> BudgetOut:
        removed = self.backend.delete_budget(self.owner_id, budget_id)
        if removed is None:
            raise NotFoundError("Budget not found")
        return removed


class TransactionService:
    """Expense records. Category existence is checked by the caller."""

    def __init__(self, backend: StorageBackend, owner_id: str) -> None:
        self.backend = backend
        self.owner_id = owner_id

    def list_all(self) -> list[TransactionOut]:
        return self.backend.list_transactions(self.owner_id)

    def create(self, data: TransactionIn) -> TransactionOut:
        fields: dict[str, Any] = data.model_dump()
        fields["date"] = normalize_transaction_date(data.date)
        return self.backend.insert_transaction(self.owner_id, fields)

    def update(self, transaction_id: str, data: TransactionUpdate) -> TransactionOut:
        changes = data.model_dump(exclude_unset=True)
        if "date" in changes:
            changes["date"] = normalize_transaction_date(data.date)
        txn = self.backend.update_transaction(self.owner_id, transaction_id, changes)
        if txn is None:
            raise NotFoundError("Transaction not found")
        return txn

    def delete(self, transaction_id: str) -> TransactionOut:
        removed = self.backend.delete_transaction(self.owner_id, transaction_id)
        if removed is None:
            raise NotFoundError("Transaction not found")
        return removed
