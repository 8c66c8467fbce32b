"""Key/value store backed by the `options` table."""

import copy
import logging
from typing import Any

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from membermail.database.models import OptionDB

logger = logging.getLogger(__name__)


class OptionRepository:
    """Repository for site options (the engine's durable key/value store)."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, key: str, default: Any = None) -> Any:
        """Return a copy of the stored value, or `default` when absent."""
        row = self.db.query(OptionDB).filter(OptionDB.key == key).first()
        if row is None or row.value is None:
            return default
        return copy.deepcopy(row.value)

    def set(self, key: str, value: Any) -> None:
        """Create or replace a value."""
        row = self.db.query(OptionDB).filter(OptionDB.key == key).first()
        try:
            if row is None:
                self.db.add(OptionDB(key=key, value=copy.deepcopy(value)))
            else:
                row.value = copy.deepcopy(value)
                flag_modified(row, "value")
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to store option {key}: {type(e).__name__}: {str(e)}")
            raise

    def delete(self, key: str) -> None:
        """Remove a value; missing keys are ignored."""
        try:
            self.db.query(OptionDB).filter(OptionDB.key == key).delete()
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to delete option {key}: {type(e).__name__}: {str(e)}")
            raise
