"""Configuration settings for the finance tracker."""
import os
from pathlib import Path
from typing import Dict, Any, List

# Paths
DATA_DIR = Path(os.environ.get("FINANCE_TRACKER_HOME") or Path.home() / ".finance_tracker")
CACHE_DB_PATH = DATA_DIR / "cache.db"

# Datasets synchronized as a unit
DATASETS = ["transactions", "categories", "budgets", "investments"]

# Record schema version written by this code (legacy records have none)
SCHEMA_VERSION = 2

# Recurring entries
RECURRENCE_MARKER = " (Recurring)"
LEGACY_RECURRENCE_MARKERS = [" (Recorrente)"]
MAX_RECURRING_OCCURRENCES = 12

# Remote sync (Firebase). Empty API key = local-only mode
FIREBASE_API_KEY = os.environ.get("FIREBASE_API_KEY", "")
FIREBASE_PROJECT_ID = os.environ.get("FIREBASE_PROJECT_ID", "")
REMOTE_TIMEOUT_SECONDS = float(os.environ.get("FINANCE_TRACKER_REMOTE_TIMEOUT", "10"))
IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
FIRESTORE_URL = "https://firestore.googleapis.com/v1"

# Reports
CATEGORY_BREAKDOWN_LIMIT = 8
UNCATEGORIZED_LABEL = "Uncategorized"
UNCATEGORIZED_COLOR = "#64748b"

# Categories
DEFAULT_CATEGORY_COLOR = "#3498db"

DEFAULT_CATEGORIES: List[Dict[str, Any]] = [
    # Income
    {"id": 1, "name": "Salary", "type": "income", "color": "#27ae60"},
    {"id": 2, "name": "Freelance", "type": "income", "color": "#2ecc71"},
    {"id": 3, "name": "Investments", "type": "income", "color": "#16a085"},
    {"id": 4, "name": "Sales", "type": "income", "color": "#1abc9c"},
    {"id": 5, "name": "Other Income", "type": "income", "color": "#58d68d"},

    # Essential expenses
    {"id": 6, "name": "Food", "type": "expense", "color": "#e74c3c"},
    {"id": 7, "name": "Housing", "type": "expense", "color": "#8e44ad"},
    {"id": 8, "name": "Transportation", "type": "expense", "color": "#e67e22"},
    {"id": 9, "name": "Fuel", "type": "expense", "color": "#d35400"},
    {"id": 10, "name": "Healthcare", "type": "expense", "color": "#c0392b"},
    {"id": 11, "name": "Education", "type": "expense", "color": "#2980b9"},

    # Variable expenses
    {"id": 12, "name": "Leisure", "type": "expense", "color": "#f39c12"},
    {"id": 13, "name": "Clothing", "type": "expense", "color": "#9b59b6"},
    {"id": 14, "name": "Technology", "type": "expense", "color": "#34495e"},
    {"id": 15, "name": "Travel", "type": "expense", "color": "#e67e22"},
    {"id": 16, "name": "Restaurants", "type": "expense", "color": "#e74c3c"},

    # Fixed bills
    {"id": 17, "name": "Internet", "type": "expense", "color": "#3498db"},
    {"id": 18, "name": "Phone", "type": "expense", "color": "#1abc9c"},
    {"id": 19, "name": "Electricity", "type": "expense", "color": "#f1c40f"},
    {"id": 20, "name": "Water", "type": "expense", "color": "#3498db"},
    {"id": 21, "name": "Gas", "type": "expense", "color": "#95a5a6"},

    # Other
    {"id": 22, "name": "Insurance", "type": "expense", "color": "#7f8c8d"},
    {"id": 23, "name": "Taxes", "type": "expense", "color": "#2c3e50"},
    {"id": 24, "name": "Donations", "type": "expense", "color": "#e91e63"},
    {"id": 25, "name": "Other", "type": "expense", "color": "#95a5a6"},
]


def remote_sync_enabled() -> bool:
    """Whether Firebase credentials are configured."""
    return bool(FIREBASE_API_KEY and FIREBASE_PROJECT_ID)


def ensure_data_dir() -> Path:
    """Ensure the data directory exists."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    return DATA_DIR
