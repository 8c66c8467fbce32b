"""Repository for member accounts and their meta values."""

import copy
import logging
from typing import Any, Iterable, List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from membermail.models.user import User
from membermail.database.models import UserDB, UserMetaDB

logger = logging.getLogger(__name__)


class UserRepository:
    """User directory: account lookups plus per-user meta."""

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> Optional[User]:
        """Get user by ID."""
        user_db = self.db.query(UserDB).filter(UserDB.id == user_id).first()
        return user_db.to_pydantic() if user_db else None

    def get_by_email(self, email: str) -> Optional[User]:
        """Get user by email."""
        user_db = self.db.query(UserDB).filter(UserDB.email == email).first()
        return user_db.to_pydantic() if user_db else None

    def query_users(self, has_meta: Iterable[str] = ()) -> List[User]:
        """List users, optionally only those holding any of the given meta keys.

        Args:
            has_meta: Meta keys; a user matches when at least one is present.

        Returns:
            Users ordered by ID
        """
        query = self.db.query(UserDB)
        keys = list(has_meta)
        if keys:
            matching = (
                self.db.query(UserMetaDB.user_id)
                .filter(UserMetaDB.meta_key.in_(keys), UserMetaDB.meta_value.isnot(None))
            )
            query = query.filter(UserDB.id.in_(matching))
        return [row.to_pydantic() for row in query.order_by(UserDB.id).all()]

    def _meta_row(self, user_id: int, key: str) -> Optional[UserMetaDB]:
        return (
            self.db.query(UserMetaDB)
            .filter(UserMetaDB.user_id == user_id, UserMetaDB.meta_key == key)
            .first()
        )

    def get_user_meta(self, user_id: int, key: str, default: Any = None) -> Any:
        """Return a copy of a meta value, or `default` when absent."""
        row = self._meta_row(user_id, key)
        if row is None or row.meta_value is None:
            return default
        return copy.deepcopy(row.meta_value)

    def set_user_meta(self, user_id: int, key: str, value: Any) -> None:
        """Create or replace a meta value."""
        row = self._meta_row(user_id, key)
        try:
            if row is None:
                self.db.add(UserMetaDB(user_id=user_id, meta_key=key, meta_value=copy.deepcopy(value)))
            else:
                row.meta_value = copy.deepcopy(value)
                flag_modified(row, "meta_value")
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to set meta {key} for user {user_id}: {type(e).__name__}: {str(e)}")
            raise

    def delete_user_meta(self, user_id: int, key: str) -> None:
        """Remove a meta value; missing keys are ignored."""
        try:
            (
                self.db.query(UserMetaDB)
                .filter(UserMetaDB.user_id == user_id, UserMetaDB.meta_key == key)
                .delete()
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to delete meta {key} for user {user_id}: {type(e).__name__}: {str(e)}")
            raise

    def create_or_update(self, user: User) -> User:
        """Create or update user (upsert).

        Args:
            user: User object to create or update

        Returns:
            Created or updated User object
        """
        user_db = None
        if user.id:
            user_db = self.db.query(UserDB).filter(UserDB.id == user.id).first()

        if user_db:
            user_db.email = user.email
            user_db.login = user.login
            user_db.display_name = user.display_name
            user_db.registered_at = user.registered_at
            user_db.is_admin = user.is_admin
            try:
                self.db.commit()
                self.db.refresh(user_db)
                logger.debug(f"Updated user {user.id}: {user.email}")
                return user_db.to_pydantic()
            except Exception as e:
                self.db.rollback()
                logger.error(f"Failed to update user {user.id}: {type(e).__name__}: {str(e)}")
                raise

        try:
            user_db = UserDB.from_pydantic(user)
            if not user.id:
                user_db.id = None
            self.db.add(user_db)
            self.db.commit()
            self.db.refresh(user_db)
            logger.debug(f"Created user {user_db.id}: {user.email}")
            return user_db.to_pydantic()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to create user {user.email}: {type(e).__name__}: {str(e)}")
            raise
