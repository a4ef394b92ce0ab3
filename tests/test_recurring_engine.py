"""Tests for recurring expansion and group membership."""
import warnings
from datetime import date

import pytest

from finance_tracker.core.exceptions import AmbiguousGroup
from finance_tracker.core.ids import IdGenerator
from finance_tracker.core.models import RecurringRule, Transaction, TransactionEdit
from finance_tracker.intelligence.recurring_engine import (
    ExplicitGroup,
    InferredGroup,
    RecurringEngine,
    add_months,
)


@pytest.fixture
def engine() -> RecurringEngine:
    return RecurringEngine(IdGenerator(clock=lambda: 1_700_000_000.0))


def make_txn(id, description, amount=100.0, when=date(2024, 1, 31), rule="none", group=None,
             category_id=7, type="expense"):
    return Transaction(
        id=id,
        description=description,
        amount=amount,
        type=type,
        category_id=category_id,
        date=when,
        recurring_rule=rule,
        recurring_group_id=group,
    )


def expanded_group(engine, description="Rent", rule="monthly", when=date(2024, 1, 31), id=1):
    base = engine.ensure_group_id(make_txn(id, description, when=when, rule=rule))
    return [base, *engine.expand(base)]


class TestDateArithmetic:

    def test_add_months_clamps_to_month_end(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
        assert add_months(date(2024, 3, 31), 1) == date(2024, 4, 30)

    def test_add_months_crosses_year(self):
        assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)


class TestExpansion:
    """Occurrence generation."""

    def test_monthly_rolls_over_short_months(self, engine):
        """Month-end bases land on the last valid day of shorter months."""
        group = expanded_group(engine)
        occurrences = group[1:]

        assert len(occurrences) == 12
        assert [o.date for o in occurrences] == [
            date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30), date(2024, 5, 31),
            date(2024, 6, 30), date(2024, 7, 31), date(2024, 8, 31), date(2024, 9, 30),
            date(2024, 10, 31), date(2024, 11, 30), date(2024, 12, 31), date(2025, 1, 31),
        ]

    def test_weekly_produces_twelve(self, engine):
        occurrences = expanded_group(engine, rule="weekly", when=date(2024, 6, 3))[1:]

        assert len(occurrences) == 12
        assert occurrences[0].date == date(2024, 6, 10)
        assert occurrences[-1].date == date(2024, 8, 26)

    def test_yearly_stops_after_one_year(self, engine):
        """Only occurrences within a year of the base are generated."""
        occurrences = expanded_group(engine, rule="yearly", when=date(2024, 2, 29))[1:]

        assert [o.date for o in occurrences] == [date(2025, 2, 28)]

    def test_occurrences_share_group_and_carry_marker(self, engine):
        group = expanded_group(engine)
        base, occurrences = group[0], group[1:]

        assert base.description == "Rent"
        assert base.recurring_group_id
        assert all(o.recurring_group_id == base.recurring_group_id for o in occurrences)
        assert all(o.description == "Rent (Recurring)" for o in occurrences)
        assert all(o.amount == base.amount and o.category_id == base.category_id for o in occurrences)

    def test_ids_are_unique(self, engine):
        """Ids never collide, even when created within one millisecond."""
        existing = [1_700_000_000_000, 1_700_000_000_001]
        base = engine.ensure_group_id(make_txn(5, "Gym", rule="weekly"))

        occurrences = engine.expand(base, existing)
        ids = [o.id for o in occurrences]

        assert len(set(ids)) == len(ids)
        assert not set(ids) & set(existing)
        assert base.id not in ids

    def test_expand_requires_rule_and_group_id(self, engine):
        with pytest.raises(ValueError):
            engine.expand(make_txn(1, "Coffee"))
        with pytest.raises(ValueError):
            engine.expand(make_txn(1, "Rent", rule="monthly"))

    def test_ensure_group_id_keeps_existing(self, engine):
        txn = make_txn(1, "Rent", rule="monthly", group="abc")
        assert engine.ensure_group_id(txn).recurring_group_id == "abc"


class TestMarkers:

    def test_strip_current_and_legacy_markers(self, engine):
        assert engine.strip_marker("Rent (Recurring)") == "Rent"
        assert engine.strip_marker("Aluguel (Recorrente)") == "Aluguel"
        assert engine.strip_marker("Rent") == "Rent"

    def test_with_marker_does_not_double(self, engine):
        assert engine.with_marker("Rent (Recurring)") == "Rent (Recurring)"


class TestGroupMembership:
    """Explicit and description-inferred groups."""

    def test_explicit_group_key(self, engine):
        group = expanded_group(engine)
        key = engine.group_key(group, group[3])

        assert key == ExplicitGroup(group[0].recurring_group_id)
        assert len(engine.group_of(group, group[3])) == 13

    def test_explicit_group_never_mixes_with_inferred(self, engine):
        """Entries with a group id are grouped by it alone."""
        group = expanded_group(engine)
        legacy = make_txn(99, "Rent (Recurring)")
        transactions = [*group, legacy]

        members = engine.group_of(transactions, group[0])
        assert legacy.id not in {t.id for t in members}

        legacy_members = engine.group_of(transactions, legacy)
        assert [t.id for t in legacy_members] == [99]

    def test_legacy_group_inferred_from_marker(self, engine):
        """A base and a marked copy without group ids form one group."""
        base = make_txn(1, "Gym")
        copy = make_txn(2, "Gym (Recurring)", when=date(2024, 2, 29))

        assert engine.group_key([base, copy], base) == InferredGroup("Gym")
        assert {t.id for t in engine.group_of([base, copy], base)} == {1, 2}
        assert {t.id for t in engine.group_of([base, copy], copy)} == {1, 2}

    def test_legacy_group_inferred_from_rule(self, engine):
        base = make_txn(1, "Gym", rule="monthly")
        other = make_txn(2, "Gym", rule="monthly", when=date(2024, 2, 29))

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", AmbiguousGroup)
            assert {t.id for t in engine.group_of([base, other], base)} == {1, 2}

    def test_unmarked_singleton_is_group_of_one(self, engine):
        """No group id, no marker, no rule: the entry stands alone."""
        first = make_txn(1, "Coffee", amount=5.0)
        second = make_txn(2, "Coffee", amount=5.0)

        assert engine.group_key([first, second], first) is None
        assert engine.group_of([first, second], first) == [first]

    def test_ambiguous_inferred_group_warns(self, engine):
        """Several unmarked entries in one inferred group raise a warning."""
        transactions = [
            make_txn(1, "Gym"),
            make_txn(2, "Gym"),
            make_txn(3, "Gym (Recurring)"),
        ]

        with pytest.warns(AmbiguousGroup):
            members = engine.group_of(transactions, transactions[0])

        assert len(members) == 3


class TestGroupEdit:
    """Propagating edits to a group."""

    def test_group_edit_preserves_dates_and_ids(self, engine):
        """Editing the amount changes all 13 amounts but no date or id."""
        group = expanded_group(engine)

        updated = engine.apply_group_edit(group, group[0], TransactionEdit(amount=1750.0))

        assert len(updated) == 13
        assert [t.id for t in updated] == [t.id for t in group]
        assert [t.date for t in updated] == [t.date for t in group]
        assert all(t.amount == 1750.0 for t in updated)
        assert all(t.recurring_group_id == group[0].recurring_group_id for t in updated)

    def test_group_edit_ignores_date(self, engine):
        group = expanded_group(engine)

        updated = engine.apply_group_edit(
            group, group[2], TransactionEdit(date=date(2030, 1, 1), category_id=8)
        )

        assert [t.date for t in updated] == [t.date for t in group]
        assert all(t.category_id == 8 for t in updated)

    def test_group_edit_reapplies_marker(self, engine):
        """The base gets the new description verbatim, occurrences get it marked."""
        group = expanded_group(engine)

        updated = engine.apply_group_edit(group, group[5], TransactionEdit(description="Rent v2"))

        assert updated[0].description == "Rent v2"
        assert all(t.description == "Rent v2 (Recurring)" for t in updated[1:])

    def test_group_edit_leaves_other_transactions(self, engine):
        group = expanded_group(engine)
        other = make_txn(42, "Rent", amount=100.0)
        transactions = [*group, other]

        updated = engine.apply_group_edit(transactions, group[0], TransactionEdit(amount=1.0))

        assert updated[-1] == other

    def test_single_edit_can_change_date(self, engine):
        txn = make_txn(1, "Coffee")
        edited = engine.apply_edit(txn, TransactionEdit(date=date(2024, 5, 5), amount=3.0))

        assert edited.id == 1
        assert edited.date == date(2024, 5, 5)
        assert edited.amount == 3.0


class TestGroupDelete:
    """Deleting whole groups."""

    def test_legacy_delete_from_either_side(self, engine):
        """Deleting either member of an inferred pair removes both."""
        base = make_txn(1, "Gym")
        copy = make_txn(2, "Gym (Recurring)")

        for target in (base, copy):
            remaining, removed = engine.apply_group_delete([base, copy], target)
            assert remaining == []
            assert removed == 2

    def test_delete_isolated_to_group(self, engine):
        """Other groups and one-off entries survive even with equal amounts and categories."""
        group_a = expanded_group(engine, description="Rent", id=1)
        group_b = expanded_group(engine, description="Rent", id=500)
        one_off = make_txn(900, "Rent", amount=100.0)
        transactions = [*group_a, *group_b, one_off]

        remaining, removed = engine.apply_group_delete(transactions, group_a[4])

        assert removed == 13
        assert {t.id for t in remaining} == {t.id for t in group_b} | {900}

    def test_singleton_delete(self, engine):
        first = make_txn(1, "Coffee")
        second = make_txn(2, "Coffee")

        remaining, removed = engine.apply_group_delete([first, second], second)

        assert removed == 1
        assert remaining == [first]
