"""Item registry.

Catalog items are created and edited here; their availability flag is
owned by the lending ledger.
"""

from .manager import CatalogManager
from .schemas import ItemCreate, ItemUpdate

__all__ = ["CatalogManager", "ItemCreate", "ItemUpdate"]
