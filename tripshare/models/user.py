from sqlalchemy import Column, String, Boolean

from tripshare.core.db import Base, UTCDateTime


class User(Base):
    """Local projection of an identity-provider account."""
    __tablename__ = "users"

    id = Column(String(128), primary_key=True)
    email = Column(String(255), unique=True, nullable=True, index=True)
    display_name = Column(String(200), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<User id={self.id} email={self.email}>"
