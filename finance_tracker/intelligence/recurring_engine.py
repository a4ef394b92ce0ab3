"""Recurring entry lifecycle: expansion, group membership, bulk edit/delete."""
import calendar
import logging
import uuid
import warnings
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from finance_tracker.config import (
    LEGACY_RECURRENCE_MARKERS,
    MAX_RECURRING_OCCURRENCES,
    RECURRENCE_MARKER,
)
from finance_tracker.core.exceptions import AmbiguousGroup
from finance_tracker.core.ids import IdGenerator
from finance_tracker.core.models import RecurringRule, Transaction, TransactionEdit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExplicitGroup:
    """Group identified by a stored ``recurringGroupId``."""

    group_id: str


@dataclass(frozen=True)
class InferredGroup:
    """Legacy group: entries without a group id sharing a base description."""

    base_description: str


GroupKey = Union[ExplicitGroup, InferredGroup]


def add_months(start: date, months: int) -> date:
    """Add calendar months, clamping the day to the end of the target month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def add_years(start: date, years: int) -> date:
    """Add calendar years (Feb 29 becomes Feb 28 in non-leap years)."""
    return add_months(start, 12 * years)


def occurrence_date(start: date, rule: RecurringRule, index: int) -> date:
    """Date of the ``index``-th occurrence after ``start``."""
    if rule is RecurringRule.WEEKLY:
        return start + timedelta(days=7 * index)
    if rule is RecurringRule.MONTHLY:
        return add_months(start, index)
    if rule is RecurringRule.YEARLY:
        return add_years(start, index)
    raise ValueError(f"Rule {rule.value!r} does not recur")


class RecurringEngine:
    """Pure logic over transaction collections.

    A recurring rule invocation produces a base transaction plus up to
    ``max_occurrences`` generated occurrences, all sharing one
    ``recurringGroupId``. Generated occurrences carry the recurrence marker
    suffix in their description; the base does not.

    Entries created before group ids existed are grouped by their description
    with the marker stripped. That fallback never applies to entries that
    carry a group id.
    """

    def __init__(
        self,
        ids: Optional[IdGenerator] = None,
        marker: str = RECURRENCE_MARKER,
        legacy_markers: Sequence[str] = tuple(LEGACY_RECURRENCE_MARKERS),
        max_occurrences: int = MAX_RECURRING_OCCURRENCES
    ):
        """Initialize the engine.

        Args:
            ids: Id generator for new occurrences
            marker: Suffix appended to generated occurrences
            legacy_markers: Older suffixes still recognized when stripping
            max_occurrences: Cap on generated occurrences per rule
        """
        self.ids = ids or IdGenerator()
        self.marker = marker
        self.markers = (marker, *legacy_markers)
        self.max_occurrences = max_occurrences

    # === Descriptions ===

    def has_marker(self, description: str) -> bool:
        return any(description.endswith(m) for m in self.markers)

    def strip_marker(self, description: str) -> str:
        """Base description with any recurrence marker suffix removed."""
        stripped = True
        while stripped:
            stripped = False
            for m in self.markers:
                if description.endswith(m):
                    description = description[: -len(m)]
                    stripped = True
        return description

    def with_marker(self, description: str) -> str:
        return self.strip_marker(description) + self.marker

    # === Expansion ===

    def ensure_group_id(self, base: Transaction) -> Transaction:
        """Return ``base`` with a recurring group id, assigning a new one if absent."""
        if base.recurring_group_id:
            return base
        return base.model_copy(update={"recurring_group_id": uuid.uuid4().hex})

    def expand(self, base: Transaction, existing_ids: Iterable[int] = ()) -> List[Transaction]:
        """Generate the dated occurrences that follow a recurring base transaction.

        Occurrence ``i`` (1-based) is the base advanced by ``i`` periods.
        Generation stops after ``max_occurrences`` or once an occurrence would
        fall more than one calendar year after the base date.

        Args:
            base: Transaction with a non-``none`` rule and a group id
            existing_ids: Ids already in use in the target collection

        Returns:
            New occurrences, in date order (base not included)

        Raises:
            ValueError: base does not recur or has no group id
        """
        if base.recurring_rule is RecurringRule.NONE:
            raise ValueError("Cannot expand a non-recurring transaction")
        if not base.recurring_group_id:
            raise ValueError("Assign a recurring group id before expanding")

        used = set(existing_ids) | {base.id}
        end = add_years(base.date, 1)
        description = self.with_marker(base.description)

        occurrences = []
        for i in range(1, self.max_occurrences + 1):
            next_date = occurrence_date(base.date, base.recurring_rule, i)
            if next_date > end:
                break
            new_id = self.ids.next_id(used)
            used.add(new_id)
            occurrences.append(base.model_copy(update={
                "id": new_id,
                "date": next_date,
                "description": description,
            }))

        logger.debug(
            f"Expanded '{base.description}' ({base.recurring_rule.value}) into {len(occurrences)} occurrences"
        )
        return occurrences

    # === Group membership ===

    def _inferred_candidates(
        self,
        transactions: Sequence[Transaction],
        base_description: str
    ) -> List[Transaction]:
        return [
            t for t in transactions
            if not t.recurring_group_id and self.strip_marker(t.description) == base_description
        ]

    def _shows_recurrence(self, transaction: Transaction) -> bool:
        return (
            self.has_marker(transaction.description)
            or transaction.recurring_rule is not RecurringRule.NONE
        )

    def group_key(
        self,
        transactions: Sequence[Transaction],
        target: Transaction
    ) -> Optional[GroupKey]:
        """Identify the group ``target`` belongs to.

        Returns:
            ExplicitGroup when target has a group id; InferredGroup when the
            entries sharing its base description show any recurrence evidence
            (a marker or a rule); None when target stands alone.
        """
        if target.recurring_group_id:
            return ExplicitGroup(target.recurring_group_id)

        base_description = self.strip_marker(target.description)
        candidates = self._inferred_candidates(transactions, base_description)
        if not any(t.id == target.id for t in candidates):
            candidates.append(target)
        if any(self._shows_recurrence(t) for t in candidates):
            return InferredGroup(base_description)
        return None

    def group_of(
        self,
        transactions: Sequence[Transaction],
        target: Transaction
    ) -> List[Transaction]:
        """All transactions in the same group as ``target``, in collection order.

        A target with no group is a group of one.
        """
        key = self.group_key(transactions, target)

        if isinstance(key, ExplicitGroup):
            return [t for t in transactions if t.recurring_group_id == key.group_id]

        if isinstance(key, InferredGroup):
            members = self._inferred_candidates(transactions, key.base_description)
            unmarked = [t for t in members if not self.has_marker(t.description)]
            if len(unmarked) > 1:
                warnings.warn(
                    f"Inferred group '{key.base_description}' has {len(unmarked)} unmarked entries; "
                    f"cannot tell which one started the series",
                    AmbiguousGroup,
                    stacklevel=2,
                )
            return members or [target]

        return [t for t in transactions if t.id == target.id] or [target]

    # === Bulk operations ===

    def apply_edit(self, transaction: Transaction, edit: TransactionEdit) -> Transaction:
        """Single-entry edit: every set field replaces the stored one, except the id."""
        record = transaction.model_dump()
        record.update(edit.changes(include_date=True))
        return Transaction.model_validate(record)

    def apply_group_edit(
        self,
        transactions: Sequence[Transaction],
        target: Transaction,
        edit: TransactionEdit
    ) -> List[Transaction]:
        """Propagate an edit to every member of ``target``'s group.

        Each member keeps its own id, date and group id. The member without a
        recurrence marker gets the edited description verbatim; the others get
        it with the marker re-appended.

        Returns:
            New collection, same order, with the group members replaced
        """
        member_ids = {t.id for t in self.group_of(transactions, target)}
        changes = edit.changes(include_date=False)
        new_description = changes.pop("description", None)

        updated = []
        for t in transactions:
            if t.id not in member_ids:
                updated.append(t)
                continue
            record = t.model_dump()
            record.update(changes)
            if new_description is not None:
                base = self.strip_marker(new_description)
                record["description"] = base + self.marker if self.has_marker(t.description) else base
            updated.append(Transaction.model_validate(record))

        logger.info(f"Group edit applied to {len(member_ids)} transactions")
        return updated

    def apply_group_delete(
        self,
        transactions: Sequence[Transaction],
        target: Transaction
    ) -> Tuple[List[Transaction], int]:
        """Remove every member of ``target``'s group.

        Returns:
            Tuple of (remaining transactions, number removed)
        """
        member_ids = {t.id for t in self.group_of(transactions, target)}
        remaining = [t for t in transactions if t.id not in member_ids]
        removed = len(transactions) - len(remaining)
        logger.info(f"Group delete removed {removed} transactions")
        return remaining, removed
