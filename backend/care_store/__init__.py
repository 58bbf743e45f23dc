from .database import SQLiteCareDB
from .store import CareStore, CareStoreError

__all__ = [
    "CareStore",
    "CareStoreError",
    "SQLiteCareDB",
]
