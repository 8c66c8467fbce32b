"""SQLAlchemy database models for membermail."""

from sqlalchemy import Column, String, Integer, Boolean, JSON, ForeignKey, UniqueConstraint

from membermail.database.database import Base


class UserDB(Base):
    """Database model for a member account."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, nullable=False, unique=True)
    login = Column(String, nullable=False, unique=True)
    display_name = Column(String, nullable=True)
    # Epoch seconds
    registered_at = Column(Integer, nullable=False, default=0)
    is_admin = Column(Boolean, nullable=False, default=False)

    def to_pydantic(self):
        """Convert database model to Pydantic model."""
        from membermail.models.user import User
        return User(
            id=self.id,
            email=self.email,
            login=self.login,
            display_name=self.display_name,
            registered_at=self.registered_at or 0,
            is_admin=bool(self.is_admin),
        )

    @classmethod
    def from_pydantic(cls, user):
        """Create database model from Pydantic model."""
        return cls(
            id=user.id,
            email=user.email,
            login=user.login,
            display_name=user.display_name,
            registered_at=user.registered_at,
            is_admin=user.is_admin,
        )


class UserMetaDB(Base):
    """Per-user key/value state (plan, expiry, tokens, sent flags)."""

    __tablename__ = "user_meta"
    __table_args__ = (
        UniqueConstraint("user_id", "meta_key", name="uq_user_meta_key"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    meta_key = Column(String, nullable=False, index=True)
    meta_value = Column(JSON, nullable=True)


class OptionDB(Base):
    """Site-wide persisted values (job queue, rate window, event log)."""

    __tablename__ = "options"

    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=True)
