from __future__ import annotations

import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, TypeVar

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from database import make_session_factory, session_scope
from errors import ConflictError
from models import Budget, Category, Transaction, User, utcnow
from schemas import BudgetOut, CategoryOut, TransactionOut, UserOut


RecordT = TypeVar("RecordT", bound=BaseModel)


class StorageBackend(ABC):
    """Persistence primitives shared by the in-memory and SQL stores.

    Lookups by id return ``None`` when the id does not belong to the owner;
    the services turn that into ``NotFoundError``. Inserting a category whose
    ``name_key`` already exists for the owner raises ``ConflictError``.
    """

    name: str

    @abstractmethod
    def upsert_user(self, owner_id: str, email: Optional[str]) -> tuple[UserOut, bool]:
        ...

    @abstractmethod
    def get_user(self, owner_id: str) -> Optional[UserOut]:
        ...

    @abstractmethod
    def list_budgets(self, owner_id: str) -> list[BudgetOut]:
        ...

    @abstractmethod
    def insert_budget(self, owner_id: str, fields: dict[str, Any]) -> BudgetOut:
        ...

    @abstractmethod
    def update_budget(
        self, owner_id: str, budget_id: str, changes: dict[str, Any]
    ) -> Optional[BudgetOut]:
        ...

    @abstractmethod
    def delete_budget(self, owner_id: str, budget_id: str) -> Optional[BudgetOut]:
        ...

    @abstractmethod
    def list_transactions(self, owner_id: str) -> list[TransactionOut]:
        ...

    @abstractmethod
    def insert_transaction(
        self, owner_id: str, fields: dict[str, Any]
    ) -> TransactionOut:
        ...

    @abstractmethod
    def update_transaction(
        self, owner_id: str, transaction_id: str, changes: dict[str, Any]
    ) -> Optional[TransactionOut]:
        ...

    @abstractmethod
    def delete_transaction(
        self, owner_id: str, transaction_id: str
    ) -> Optional[TransactionOut]:
        ...

    @abstractmethod
    def list_categories(self, owner_id: str) -> list[CategoryOut]:
        ...

    @abstractmethod
    def find_category(self, owner_id: str, name_key: str) -> Optional[CategoryOut]:
        ...

    @abstractmethod
    def insert_category(
        self, owner_id: str, name: str, emoji: Optional[str]
    ) -> CategoryOut:
        ...

    @abstractmethod
    def seed_categories(self, owner_id: str, names: Iterable[str]) -> None:
        """Insert each name, silently skipping names that already exist."""

    @abstractmethod
    def update_category_emoji(
        self, owner_id: str, category_id: str, emoji: Optional[str]
    ) -> Optional[CategoryOut]:
        ...

    @abstractmethod
    def delete_category(
        self, owner_id: str, category_id: str
    ) -> Optional[CategoryOut]:
        ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _name_key(name: str) -> str:
    return name.strip().lower()


class MemoryBackend(StorageBackend):
    """Process-local store, one map per entity type keyed by owner id."""

    name = "memory"

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._users: dict[str, UserOut] = {}
        self._budgets: dict[str, list[BudgetOut]] = {}
        self._transactions: dict[str, list[TransactionOut]] = {}
        self._categories: dict[str, list[CategoryOut]] = {}

    @staticmethod
    def _new_id() -> str:
        return uuid.uuid4().hex

    @staticmethod
    def _copy(record: RecordT) -> RecordT:
        return record.model_copy(deep=True)

    @staticmethod
    def _index_of(records: list[RecordT], record_id: str) -> Optional[int]:
        for idx, record in enumerate(records):
            if record.id == record_id:
                return idx
        return None

    def _update_in(
        self,
        table: dict[str, list[RecordT]],
        owner_id: str,
        record_id: str,
        changes: dict[str, Any],
    ) -> Optional[RecordT]:
        with self._lock:
            records = table.get(owner_id, [])
            idx = self._index_of(records, record_id)
            if idx is None:
                return None
            records[idx] = records[idx].model_copy(update=changes, deep=True)
            return self._copy(records[idx])

    def _delete_from(
        self, table: dict[str, list[RecordT]], owner_id: str, record_id: str
    ) -> Optional[RecordT]:
        with self._lock:
            records = table.get(owner_id, [])
            idx = self._index_of(records, record_id)
            if idx is None:
                return None
            return records.pop(idx)

    def _list_from(
        self, table: dict[str, list[RecordT]], owner_id: str
    ) -> list[RecordT]:
        with self._lock:
            return [self._copy(r) for r in table.get(owner_id, [])]

    def _append_to(
        self, table: dict[str, list[RecordT]], owner_id: str, record: RecordT
    ) -> RecordT:
        with self._lock:
            table.setdefault(owner_id, []).append(record)
            return self._copy(record)

    def upsert_user(self, owner_id: str, email: Optional[str]) -> tuple[UserOut, bool]:
        with self._lock:
            existing = self._users.get(owner_id)
            now = _now()
            if existing is None:
                user = UserOut(
                    id=self._new_id(),
                    owner_id=owner_id,
                    email=email,
                    created_at=now,
                    updated_at=now,
                )
                self._users[owner_id] = user
                return self._copy(user), True
            changes: dict[str, Any] = {"updated_at": now}
            if email:
                changes["email"] = email
            self._users[owner_id] = existing.model_copy(update=changes)
            return self._copy(self._users[owner_id]), False

    def get_user(self, owner_id: str) -> Optional[UserOut]:
        with self._lock:
            user = self._users.get(owner_id)
            return self._copy(user) if user else None

    def list_budgets(self, owner_id: str) -> list[BudgetOut]:
        return self._list_from(self._budgets, owner_id)

    def insert_budget(self, owner_id: str, fields: dict[str, Any]) -> BudgetOut:
        budget = BudgetOut(
            id=self._new_id(), owner_id=owner_id, created_at=_now(), **fields
        )
        return self._append_to(self._budgets, owner_id, budget)

    def update_budget(
        self, owner_id: str, budget_id: str, changes: dict[str, Any]
    ) -> Optional[BudgetOut]:
        return self._update_in(self._budgets, owner_id, budget_id, changes)

    def delete_budget(self, owner_id: str, budget_id: str) -> Optional[BudgetOut]:
        return self._delete_from(self._budgets, owner_id, budget_id)

    def list_transactions(self, owner_id: str) -> list[TransactionOut]:
        return self._list_from(self._transactions, owner_id)

    def insert_transaction(
        self, owner_id: str, fields: dict[str, Any]
    ) -> TransactionOut:
        txn = TransactionOut(
            id=self._new_id(), owner_id=owner_id, created_at=_now(), **fields
        )
        return self._append_to(self._transactions, owner_id, txn)

    def update_transaction(
        self, owner_id: str, transaction_id: str, changes: dict[str, Any]
    ) -> Optional[TransactionOut]:
        return self._update_in(self._transactions, owner_id, transaction_id, changes)

    def delete_transaction(
        self, owner_id: str, transaction_id: str
    ) -> Optional[TransactionOut]:
        return self._delete_from(self._transactions, owner_id, transaction_id)

    def list_categories(self, owner_id: str) -> list[CategoryOut]:
        return self._list_from(self._categories, owner_id)

    def find_category(self, owner_id: str, name_key: str) -> Optional[CategoryOut]:
        with self._lock:
            for category in self._categories.get(owner_id, []):
                if _name_key(category.name) == name_key:
                    return self._copy(category)
            return None

    def insert_category(
        self, owner_id: str, name: str, emoji: Optional[str]
    ) -> CategoryOut:
        with self._lock:
            if self.find_category(owner_id, _name_key(name)) is not None:
                raise ConflictError("Category already exists")
            now = _now()
            category = CategoryOut(
                id=self._new_id(),
                owner_id=owner_id,
                name=name,
                emoji=emoji,
                created_at=now,
                updated_at=now,
            )
            return self._append_to(self._categories, owner_id, category)

    def seed_categories(self, owner_id: str, names: Iterable[str]) -> None:
        for name in names:
            try:
                self.insert_category(owner_id, name, None)
            except ConflictError:
                continue

    def update_category_emoji(
        self, owner_id: str, category_id: str, emoji: Optional[str]
    ) -> Optional[CategoryOut]:
        return self._update_in(
            self._categories,
            owner_id,
            category_id,
            {"emoji": emoji, "updated_at": _now()},
        )

    def delete_category(
        self, owner_id: str, category_id: str
    ) -> Optional[CategoryOut]:
        return self._delete_from(self._categories, owner_id, category_id)


# Primary keys are portable `Integer` columns (32-bit on PostgreSQL).
MAX_ROW_ID = 2**31 - 1


def _parse_id(record_id: str) -> Optional[int]:
    try:
        pk = int(str(record_id))
    except (TypeError, ValueError):
        return None
    if not 0 < pk <= MAX_ROW_ID:
        return None
    return pk


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_db_datetime(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def user_from_row(row: User) -> UserOut:
    return UserOut(
        id=str(row.id),
        owner_id=row.owner_id,
        email=row.email,
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
    )


def budget_from_row(row: Budget) -> BudgetOut:
    return BudgetOut(
        id=str(row.id),
        owner_id=row.owner_id,
        period=row.period,
        amount=row.amount,
        categories=list(row.categories) if row.categories is not None else None,
        created_at=_as_utc(row.created_at),
    )


def transaction_from_row(row: Transaction) -> TransactionOut:
    return TransactionOut(
        id=str(row.id),
        owner_id=row.owner_id,
        amount=row.amount,
        category=row.category,
        date=_as_utc(row.date),
        description=row.description,
        created_at=_as_utc(row.created_at),
    )


def category_from_row(row: Category) -> CategoryOut:
    return CategoryOut(
        id=str(row.id),
        owner_id=row.owner_id,
        name=row.name,
        emoji=row.emoji,
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
    )


class SQLBackend(StorageBackend):
    name = "sql"

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._sessions = make_session_factory(engine)

    def _owned(self, session, model, owner_id: str, record_id: str):
        pk = _parse_id(record_id)
        if pk is None:
            return None
        stmt = (
            select(model)
            .where(model.id == pk, model.owner_id == owner_id)
            .with_for_update()
        )
        return session.scalar(stmt)

    def _list(self, model, mapper, owner_id: str) -> list:
        with session_scope(self._sessions) as session:
            rows = session.scalars(
                select(model).where(model.owner_id == owner_id).order_by(model.id)
            ).all()
            return [mapper(row) for row in rows]

    def _insert(self, model, mapper, owner_id: str, fields: dict[str, Any]):
        with session_scope(self._sessions) as session:
            row = model(owner_id=owner_id, **fields)
            session.add(row)
            session.flush()
            return mapper(row)

    def _update(self, model, mapper, owner_id: str, record_id: str, changes):
        with session_scope(self._sessions) as session:
            row = self._owned(session, model, owner_id, record_id)
            if row is None:
                return None
            for key, value in changes.items():
                setattr(row, key, value)
            session.flush()
            return mapper(row)

    def _delete(self, model, mapper, owner_id: str, record_id: str):
        with session_scope(self._sessions) as session:
            row = self._owned(session, model, owner_id, record_id)
            if row is None:
                return None
            removed = mapper(row)
            session.delete(row)
            return removed

    def _upsert_user_once(
        self, owner_id: str, email: Optional[str]
    ) -> tuple[UserOut, bool]:
        with session_scope(self._sessions) as session:
            user = session.scalar(select(User).where(User.owner_id == owner_id))
            if user is None:
                user = User(owner_id=owner_id, email=email)
                session.add(user)
                session.flush()
                return user_from_row(user), True
            if email:
                user.email = email
            user.updated_at = utcnow()
            session.flush()
            return user_from_row(user), False

    def upsert_user(self, owner_id: str, email: Optional[str]) -> tuple[UserOut, bool]:
        try:
            return self._upsert_user_once(owner_id, email)
        except IntegrityError:
            # Lost an insert race on uq_user_owner; the row exists now.
            return self._upsert_user_once(owner_id, email)

    def get_user(self, owner_id: str) -> Optional[UserOut]:
        with session_scope(self._sessions) as session:
            user = session.scalar(select(User).where(User.owner_id == owner_id))
            return user_from_row(user) if user else None

    def list_budgets(self, owner_id: str) -> list[BudgetOut]:
        return self._list(Budget, budget_from_row, owner_id)

    def insert_budget(self, owner_id: str, fields: dict[str, Any]) -> BudgetOut:
        return self._insert(Budget, budget_from_row, owner_id, fields)

    def update_budget(
        self, owner_id: str, budget_id: str, changes: dict[str, Any]
    ) -> Optional[BudgetOut]:
        return self._update(Budget, budget_from_row, owner_id, budget_id, changes)

    def delete_budget(self, owner_id: str, budget_id: str) -> Optional[BudgetOut]:
        return self._delete(Budget, budget_from_row, owner_id, budget_id)

    def list_transactions(self, owner_id: str) -> list[TransactionOut]:
        return self._list(Transaction, transaction_from_row, owner_id)

    def insert_transaction(
        self, owner_id: str, fields: dict[str, Any]
    ) -> TransactionOut:
        fields = dict(fields)
        if "date" in fields:
            fields["date"] = _to_db_datetime(fields["date"])
        return self._insert(Transaction, transaction_from_row, owner_id, fields)

    def update_transaction(
        self, owner_id: str, transaction_id: str, changes: dict[str, Any]
    ) -> Optional[TransactionOut]:
        changes = dict(changes)
        if "date" in changes:
            changes["date"] = _to_db_datetime(changes["date"])
        return self._update(
            Transaction, transaction_from_row, owner_id, transaction_id, changes
        )

    def delete_transaction(
        self, owner_id: str, transaction_id: str
    ) -> Optional[TransactionOut]:
        return self._delete(Transaction, transaction_from_row, owner_id, transaction_id)

    def list_categories(self, owner_id: str) -> list[CategoryOut]:
        return self._list(Category, category_from_row, owner_id)

    def find_category(self, owner_id: str, name_key: str) -> Optional[CategoryOut]:
        with session_scope(self._sessions) as session:
            row = session.scalar(
                select(Category).where(
                    Category.owner_id == owner_id, Category.name_key == name_key
                )
            )
            return category_from_row(row) if row else None

    def insert_category(
        self, owner_id: str, name: str, emoji: Optional[str]
    ) -> CategoryOut:
        fields = {"name": name, "name_key": _name_key(name), "emoji": emoji}
        try:
            return self._insert(Category, category_from_row, owner_id, fields)
        except IntegrityError as exc:
            raise ConflictError("Category already exists") from exc

    def seed_categories(self, owner_id: str, names: Iterable[str]) -> None:
        # One short transaction per name so a duplicate only drops that name.
        for name in names:
            try:
                self.insert_category(owner_id, name, None)
            except ConflictError:
                continue

    def update_category_emoji(
        self, owner_id: str, category_id: str, emoji: Optional[str]
    ) -> Optional[CategoryOut]:
        return self._update(
            Category,
            category_from_row,
            owner_id,
            category_id,
            {"emoji": emoji, "updated_at": utcnow()},
        )

    def delete_category(
        self, owner_id: str, category_id: str
    ) -> Optional[CategoryOut]:
        return self._delete(Category, category_from_row, owner_id, category_id)
