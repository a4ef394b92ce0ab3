"""Financial store - in-memory collections and the main orchestration layer."""
import asyncio
import json
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from finance_tracker.config import (
    CACHE_DB_PATH,
    CATEGORY_BREAKDOWN_LIMIT,
    DEFAULT_CATEGORIES,
    FIREBASE_API_KEY,
    FIREBASE_PROJECT_ID,
    UNCATEGORIZED_LABEL,
    ensure_data_dir,
    remote_sync_enabled,
)
from finance_tracker.core.exceptions import LocalWriteFailure, MalformedImport, NotFound
from finance_tracker.core.ids import IdGenerator
from finance_tracker.core.migrations import parse_dataset, serialize_dataset
from finance_tracker.core.models import (
    Category,
    CategoryCreate,
    CategoryEdit,
    Dataset,
    Investment,
    InvestmentCreate,
    InvestmentEdit,
    RecurringRule,
    Transaction,
    TransactionCreate,
    TransactionEdit,
    TransactionType,
    validate_month_key,
)
from finance_tracker.db.local_cache import LocalCache
from finance_tracker.db.remote_store import FirestoreRemoteStore, RemoteStore
from finance_tracker.intelligence import investments as investment_math
from finance_tracker.intelligence import reports
from finance_tracker.intelligence.recurring_engine import RecurringEngine
from finance_tracker.sync.coordinator import SyncCoordinator

logger = logging.getLogger(__name__)


class FinancialStore:
    """Owner of the transactions, categories, budgets and investments.

    Every mutation updates the in-memory collections and then persists the
    touched dataset through the SyncCoordinator before the next mutation may
    start. If the local write fails the in-memory change is kept and
    LocalWriteFailure is raised so the caller can retry or warn the user.
    """

    def __init__(
        self,
        coordinator: SyncCoordinator,
        engine: Optional[RecurringEngine] = None,
        ids: Optional[IdGenerator] = None
    ):
        """Initialize the store.

        Args:
            coordinator: Persistence coordinator (the store is its only caller)
            engine: Recurring engine (default: one sharing ``ids``)
            ids: Id generator for new records
        """
        self.coordinator = coordinator
        self.ids = ids or IdGenerator()
        self.engine = engine or RecurringEngine(self.ids)

        self.transactions: List[Transaction] = []
        self.categories: List[Category] = self._default_categories()
        self.budgets: Dict[str, float] = {}
        self.investments: List[Investment] = []
        self.loaded = False
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        db_path: Optional[Path] = None,
        remote: Optional[RemoteStore] = None,
        online: bool = True
    ) -> "FinancialStore":
        """Build a store on the configured local cache and remote.

        Args:
            db_path: Local cache file (default: ~/.finance_tracker/cache.db)
            remote: Remote store (default: Firestore when credentials are configured)
            online: Initial connectivity state
        """
        if db_path is None:
            ensure_data_dir()
            db_path = CACHE_DB_PATH
        if remote is None and remote_sync_enabled():
            remote = FirestoreRemoteStore(FIREBASE_API_KEY, FIREBASE_PROJECT_ID)
        coordinator = SyncCoordinator(LocalCache(db_path), remote, online=online)
        return cls(coordinator)

    def close(self):
        """Close the local cache."""
        self.coordinator.cache.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @staticmethod
    def _default_categories() -> List[Category]:
        return [Category.model_validate(c) for c in DEFAULT_CATEGORIES]

    # === Loading and persistence ===

    async def load(self) -> "FinancialStore":
        """Authenticate and load all four datasets (remote first, local fallback)."""
        await self.coordinator.authenticate()

        loaded = {}
        for dataset in Dataset:
            raw = await self.coordinator.load(dataset)
            loaded[dataset] = parse_dataset(dataset, raw)

        async with self._lock:
            self.transactions = loaded[Dataset.TRANSACTIONS] or []
            categories = loaded[Dataset.CATEGORIES]
            self.categories = self._default_categories() if categories is None else categories
            self.budgets = loaded[Dataset.BUDGETS] or {}
            self.investments = loaded[Dataset.INVESTMENTS] or []
            self.loaded = True

        logger.info(
            f"Loaded {len(self.transactions)} transactions, {len(self.categories)} categories, "
            f"{len(self.budgets)} budgets, {len(self.investments)} investments"
        )
        return self

    def _collection(self, dataset: Dataset) -> Any:
        return {
            Dataset.TRANSACTIONS: self.transactions,
            Dataset.CATEGORIES: self.categories,
            Dataset.BUDGETS: self.budgets,
            Dataset.INVESTMENTS: self.investments,
        }[dataset]

    async def _persist(self, dataset: Dataset) -> None:
        value = serialize_dataset(dataset, self._collection(dataset))
        if not await self.coordinator.save(dataset, value):
            raise LocalWriteFailure(dataset.value)

    # === Transactions ===

    def _find_transaction(self, txn_id: int) -> Transaction:
        for t in self.transactions:
            if t.id == txn_id:
                return t
        raise NotFound("Transaction", txn_id)

    def get_transaction(self, txn_id: int) -> Transaction:
        return self._find_transaction(txn_id)

    def group_members(self, txn_id: int) -> List[Transaction]:
        """Transactions that a group edit/delete of ``txn_id`` would touch."""
        return self.engine.group_of(self.transactions, self._find_transaction(txn_id))

    async def add_transaction(self, data: TransactionCreate) -> List[Transaction]:
        """Add a transaction, expanding its recurring rule if it has one.

        Returns:
            The created transactions: the base first, then any occurrences
        """
        async with self._lock:
            existing = [t.id for t in self.transactions]
            base = Transaction(id=self.ids.next_id(existing), **data.model_dump())
            created = [base]

            if base.recurring_rule is not RecurringRule.NONE:
                base = self.engine.ensure_group_id(base.model_copy(
                    update={"description": self.engine.strip_marker(base.description)}
                ))
                created = [base, *self.engine.expand(base, existing)]

            self.transactions.extend(created)
            await self._persist(Dataset.TRANSACTIONS)

        logger.info(f"Added transaction {base.id} ({len(created) - 1} recurring occurrences)")
        return created

    async def edit_transaction(
        self,
        txn_id: int,
        edit: TransactionEdit,
        apply_to_group: bool = False
    ) -> List[Transaction]:
        """Replace fields of one transaction, or of its whole recurring group.

        Returns:
            The updated transactions
        """
        async with self._lock:
            target = self._find_transaction(txn_id)

            if apply_to_group:
                member_ids = {t.id for t in self.engine.group_of(self.transactions, target)}
                self.transactions = self.engine.apply_group_edit(self.transactions, target, edit)
                updated = [t for t in self.transactions if t.id in member_ids]
            else:
                replacement = self.engine.apply_edit(target, edit)
                self.transactions = [replacement if t.id == txn_id else t for t in self.transactions]
                updated = [replacement]

            await self._persist(Dataset.TRANSACTIONS)
        return updated

    async def delete_transaction(self, txn_id: int, apply_to_group: bool = False) -> int:
        """Delete one transaction or its whole group. Confirmation is the caller's job.

        Returns:
            Number of transactions removed
        """
        async with self._lock:
            target = self._find_transaction(txn_id)

            if apply_to_group:
                self.transactions, removed = self.engine.apply_group_delete(self.transactions, target)
            else:
                self.transactions = [t for t in self.transactions if t.id != txn_id]
                removed = 1

            await self._persist(Dataset.TRANSACTIONS)

        logger.info(f"Deleted {removed} transaction(s) starting from {txn_id}")
        return removed

    def list_transactions(
        self,
        year: Optional[int] = None,
        month: Optional[str] = None,
        type: Optional[TransactionType] = None,
        category_id: Optional[int] = None
    ) -> List[Transaction]:
        """Filtered transactions, newest first."""
        result = self.transactions
        if year is not None:
            result = [t for t in result if t.date.year == int(year)]
        if month is not None:
            result = [t for t in result if t.date.strftime("%Y-%m") == month]
        if type is not None:
            result = [t for t in result if t.type == TransactionType(type)]
        if category_id is not None:
            result = [t for t in result if t.category_id == category_id]
        return sorted(result, key=lambda t: (t.date, t.id), reverse=True)

    def available_years(self) -> List[int]:
        return sorted({t.date.year for t in self.transactions}, reverse=True)

    def available_months(self, year: Optional[int] = None) -> List[str]:
        months = {
            t.date.strftime("%Y-%m")
            for t in self.transactions
            if year is None or t.date.year == int(year)
        }
        return sorted(months, reverse=True)

    # === Categories ===

    def _find_category(self, category_id: int) -> Category:
        for c in self.categories:
            if c.id == category_id:
                return c
        raise NotFound("Category", category_id)

    def list_categories(self, type: Optional[TransactionType] = None) -> List[Category]:
        if type is None:
            return list(self.categories)
        return [c for c in self.categories if c.type == TransactionType(type)]

    def category_name(self, category_id: Optional[int]) -> str:
        """Display name for a category reference; dangling references are uncategorized."""
        for c in self.categories:
            if c.id == category_id:
                return c.name
        return UNCATEGORIZED_LABEL

    async def add_category(self, data: CategoryCreate) -> Category:
        async with self._lock:
            category = Category(
                id=self.ids.next_id(c.id for c in self.categories),
                **data.model_dump()
            )
            self.categories.append(category)
            await self._persist(Dataset.CATEGORIES)
        return category

    async def edit_category(self, category_id: int, edit: CategoryEdit) -> Category:
        async with self._lock:
            current = self._find_category(category_id)
            record = current.model_dump()
            record.update({name: getattr(edit, name) for name in edit.model_fields_set})
            updated = Category.model_validate(record)
            self.categories = [updated if c.id == category_id else c for c in self.categories]
            await self._persist(Dataset.CATEGORIES)
        return updated

    async def delete_category(self, category_id: int) -> None:
        """Delete a category. Transactions referencing it keep the dangling id."""
        async with self._lock:
            self._find_category(category_id)
            self.categories = [c for c in self.categories if c.id != category_id]
            await self._persist(Dataset.CATEGORIES)

    # === Budgets ===

    async def set_budget(self, month: str, amount: float) -> Dict[str, float]:
        validate_month_key(month)
        if amount < 0:
            raise ValueError("Budget amount must be non-negative")
        async with self._lock:
            self.budgets = {**self.budgets, month: float(amount)}
            await self._persist(Dataset.BUDGETS)
        return dict(self.budgets)

    async def delete_budget(self, month: str) -> bool:
        async with self._lock:
            if month not in self.budgets:
                return False
            self.budgets = {k: v for k, v in self.budgets.items() if k != month}
            await self._persist(Dataset.BUDGETS)
        return True

    def budget_status(self, month: str) -> Dict[str, Any]:
        validate_month_key(month)
        return reports.budget_status(self.transactions, self.budgets, month)

    # === Investments ===

    def _find_investment(self, investment_id: int) -> Investment:
        for inv in self.investments:
            if inv.id == investment_id:
                return inv
        raise NotFound("Investment", investment_id)

    def get_investment(self, investment_id: int) -> Investment:
        return self._find_investment(investment_id)

    async def add_investment(self, data: InvestmentCreate) -> Investment:
        async with self._lock:
            investment = Investment(
                id=self.ids.next_id(inv.id for inv in self.investments),
                **data.model_dump()
            )
            self.investments.append(investment)
            await self._persist(Dataset.INVESTMENTS)
        return investment

    async def edit_investment(self, investment_id: int, edit: InvestmentEdit) -> Investment:
        async with self._lock:
            current = self._find_investment(investment_id)
            record = current.model_dump()
            record.update({name: getattr(edit, name) for name in edit.model_fields_set})
            updated = Investment.model_validate(record)
            self.investments = [updated if inv.id == investment_id else inv for inv in self.investments]
            await self._persist(Dataset.INVESTMENTS)
        return updated

    async def delete_investment(self, investment_id: int) -> None:
        async with self._lock:
            self._find_investment(investment_id)
            self.investments = [inv for inv in self.investments if inv.id != investment_id]
            await self._persist(Dataset.INVESTMENTS)

    def investment_value(self, investment_id: int, as_of: Optional[date] = None) -> float:
        return investment_math.current_value(self._find_investment(investment_id), as_of)

    def investment_summary(self, as_of: Optional[date] = None) -> Dict[str, Any]:
        return investment_math.portfolio_summary(self.investments, as_of)

    # === Reports ===

    def totals(self, year: Optional[int] = None, month: Optional[str] = None) -> Dict[str, float]:
        return reports.totals(self.transactions, year, month)

    def category_breakdown(
        self,
        month: Optional[str] = None,
        limit: int = CATEGORY_BREAKDOWN_LIMIT
    ) -> List[Dict[str, Any]]:
        return reports.category_breakdown(self.transactions, self.categories, month, limit)

    def get_summary(self, year: Optional[int] = None, month: Optional[str] = None) -> Dict[str, Any]:
        """Dashboard summary for a period (all time by default)."""
        return {
            "period": {"year": year, "month": month},
            "totals": self.totals(year, month),
            "categoryBreakdown": self.category_breakdown(month),
            "cashFlow": reports.monthly_cash_flow(self.transactions),
            "budget": self.budget_status(month) if month else None,
            "transactionCount": len(self.list_transactions(year, month)),
            "investments": self.investment_summary(),
        }

    # === Snapshot export / import ===

    def export_snapshot(self) -> Dict[str, Any]:
        """All four datasets as one backup object."""
        snapshot = {
            dataset.value: serialize_dataset(dataset, self._collection(dataset))
            for dataset in Dataset
        }
        snapshot["exportDate"] = datetime.now(timezone.utc).isoformat()
        return snapshot

    async def import_snapshot(self, blob: Union[str, bytes, Dict[str, Any]]) -> Dict[str, int]:
        """Replace datasets from a backup produced by export_snapshot.

        A missing (or null) top-level key leaves that dataset unchanged. The
        whole payload is validated before anything is applied.

        Returns:
            Record count per imported dataset

        Raises:
            MalformedImport: payload is not a well-formed snapshot
            LocalWriteFailure: a dataset could not be written locally
        """
        if isinstance(blob, bytes):
            try:
                blob = blob.decode("utf-8")
            except UnicodeDecodeError as e:
                raise MalformedImport(f"Import is not UTF-8 text: {e}") from e
        if isinstance(blob, str):
            try:
                blob = json.loads(blob)
            except json.JSONDecodeError as e:
                raise MalformedImport(f"Import is not valid JSON: {e}") from e
        if not isinstance(blob, dict):
            raise MalformedImport("Import must be a JSON object")

        parsed = {}
        for dataset in Dataset:
            raw = blob.get(dataset.value)
            if raw is None:
                continue
            try:
                parsed[dataset] = parse_dataset(dataset, raw, strict=True)
            except ValueError as e:
                raise MalformedImport(str(e)) from e

        if not parsed:
            logger.info("Import contained no datasets")
            return {}

        async with self._lock:
            for dataset, value in parsed.items():
                if dataset is Dataset.TRANSACTIONS:
                    self.transactions = value
                elif dataset is Dataset.CATEGORIES:
                    self.categories = value
                elif dataset is Dataset.BUDGETS:
                    self.budgets = value
                else:
                    self.investments = value

            failed = []
            for dataset in parsed:
                try:
                    await self._persist(dataset)
                except LocalWriteFailure:
                    failed.append(dataset.value)
            if failed:
                raise LocalWriteFailure(", ".join(failed))

        counts = {dataset.value: len(value) for dataset, value in parsed.items()}
        logger.info(f"Imported {counts}")
        return counts

    # === Sync ===

    def sync_status(self) -> Dict[str, Any]:
        return self.coordinator.status()

    async def go_online(self) -> List[str]:
        """Connectivity restored signal."""
        return await self.coordinator.handle_online()

    def go_offline(self) -> None:
        """Connectivity lost signal."""
        self.coordinator.handle_offline()

    async def resync(self) -> List[str]:
        return await self.coordinator.resync()
