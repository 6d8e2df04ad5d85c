"""
Document Store - Files referenced by orders (packing lists, proforma and commercial invoices)

Orders only keep the storage id; the store resolves it to a file under
DOCUMENT_STORAGE_DIR.
"""
from pathlib import Path
from typing import Optional
import logging

from orderledger.core.config import settings

logger = logging.getLogger(__name__)


class DocumentStore:
    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.DOCUMENT_STORAGE_DIR)

    def path_for(self, storage_id: str) -> Path:
        # Storage ids are flat names; never let one escape the root
        return self.root / Path(storage_id).name

    def exists(self, storage_id: str) -> bool:
        return self.path_for(storage_id).is_file()

    def delete(self, storage_id: str) -> bool:
        """Remove a stored file. Returns False when there was nothing to remove."""
        path = self.path_for(storage_id)
        if not path.is_file():
            return False
        path.unlink()
        logger.info(f"Deleted stored document {storage_id}")
        return True
