"""Record migrations applied when datasets are loaded or imported.

Stored datasets may predate fields added later (``recurringGroupId``,
``schemaVersion``) or use the legacy key names of version 1 records
(``category``, ``recurring``, ``timestamp``). Every record goes through a
``migrate_*`` step that backfills and renames fields, so the rest of the code
only ever sees the current layout.
"""
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from finance_tracker.config import SCHEMA_VERSION
from finance_tracker.core.models import (
    Budgets,
    Category,
    Dataset,
    Investment,
    Transaction,
)

logger = logging.getLogger(__name__)

LEGACY_TRANSACTION_KEYS = {
    "category": "categoryId",
    "recurring": "recurringRule",
}


def _coerce_id(value: Any) -> Any:
    """Normalize ids stored as strings or floats (form values, JS numbers)."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return value


def _require_mapping(raw: Any, kind: str) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise ValueError(f"{kind} record must be an object, got {type(raw).__name__}")
    return dict(raw)


def migrate_transaction(raw: Any) -> Dict[str, Any]:
    """Bring a stored transaction dict up to the current schema."""
    record = _require_mapping(raw, "transaction")
    version = record.get("schemaVersion") or 1

    if version < 2:
        for old, new in LEGACY_TRANSACTION_KEYS.items():
            if old in record:
                value = record.pop(old)
                record.setdefault(new, value)
        record.pop("timestamp", None)

    record["id"] = _coerce_id(record.get("id"))
    record["categoryId"] = _coerce_id(record.get("categoryId"))
    if not record.get("recurringRule"):
        record["recurringRule"] = "none"
    record["recurringGroupId"] = record.get("recurringGroupId") or None
    record["schemaVersion"] = SCHEMA_VERSION
    return record


def migrate_category(raw: Any) -> Dict[str, Any]:
    record = _require_mapping(raw, "category")
    record["id"] = _coerce_id(record.get("id"))
    if not record.get("color"):
        record.pop("color", None)
    return record


def migrate_investment(raw: Any) -> Dict[str, Any]:
    record = _require_mapping(raw, "investment")
    record["id"] = _coerce_id(record.get("id"))
    if not record.get("type"):
        record.pop("type", None)
    record["maturityDate"] = record.get("maturityDate") or None
    return record


def migrate_budgets(raw: Any) -> Dict[str, float]:
    """Budgets are a flat ``{YYYY-MM: amount}`` mapping; amounts may be strings."""
    record = _require_mapping(raw, "budgets")
    months = {}
    for key, amount in record.items():
        if isinstance(amount, str):
            amount = float(amount)
        months[key] = amount
    return Budgets(months=months).months


_RECORD_PARSERS = {
    Dataset.TRANSACTIONS: (migrate_transaction, Transaction),
    Dataset.CATEGORIES: (migrate_category, Category),
    Dataset.INVESTMENTS: (migrate_investment, Investment),
}


def parse_dataset(dataset: Dataset, raw: Any, strict: bool = False) -> Optional[Any]:
    """Turn a stored dataset value into typed records.

    Args:
        dataset: Which dataset ``raw`` belongs to
        raw: Decoded JSON value as stored (list for record datasets,
            object for budgets). None means the dataset was never stored.
        strict: Raise on the first bad record instead of skipping it

    Returns:
        List of models, a budgets dict, or None when ``raw`` is None

    Raises:
        ValueError: (strict mode) the value or a record is malformed.
            pydantic's ValidationError is a ValueError subclass.
    """
    if raw is None:
        return None

    dataset = Dataset(dataset)
    if dataset is Dataset.BUDGETS:
        try:
            return migrate_budgets(raw)
        except (ValueError, TypeError, ValidationError) as e:
            if strict:
                raise ValueError(f"Malformed budgets: {e}") from e
            logger.warning(f"Ignoring malformed budgets dataset: {e}")
            return {}

    if not isinstance(raw, list):
        message = f"Dataset '{dataset.value}' must be a list, got {type(raw).__name__}"
        if strict:
            raise ValueError(message)
        logger.warning(message)
        return []

    migrate, model = _RECORD_PARSERS[dataset]
    records: List[Any] = []
    seen_ids = set()
    for index, item in enumerate(raw):
        try:
            record = model.model_validate(migrate(item))
        except (ValueError, TypeError) as e:
            if strict:
                raise ValueError(f"Malformed {dataset.value} entry #{index}: {e}") from e
            logger.warning(f"Skipping malformed {dataset.value} entry #{index}: {e}")
            continue
        if record.id in seen_ids:
            if strict:
                raise ValueError(f"Duplicate id {record.id} in {dataset.value}")
            logger.warning(f"Skipping duplicate id {record.id} in {dataset.value}")
            continue
        seen_ids.add(record.id)
        records.append(record)
    return records


def serialize_dataset(dataset: Dataset, value: Any) -> Any:
    """Inverse of parse_dataset: typed records to a JSON-ready value."""
    if Dataset(dataset) is Dataset.BUDGETS:
        return dict(value)
    return [record.to_record() for record in value]
