from sqlalchemy import Column, DateTime, String, func

from session_auth.core.base import Base


class User(Base):
    __tablename__ = "users"

    # Shared key with the identity provider: always the provider's subject id.
    id = Column(String(128), primary_key=True)

    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<User id={self.id!r} email={self.email!r}>"
