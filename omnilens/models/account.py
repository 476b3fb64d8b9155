# omnilens/models/account.py
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from omnilens.core.db import Base

class Account(Base):
    # One row per linked OAuth provider; the GitHub row carries the API token
    __tablename__ = "account"

    id = Column(String, primary_key=True)
    account_id = Column("accountId", String, nullable=False)
    provider_id = Column("providerId", String, nullable=False)      # e.g. "github"
    user_id = Column("userId", String, ForeignKey("user.id", ondelete="CASCADE"), index=True, nullable=False)
    access_token = Column("accessToken", String, nullable=True)
    refresh_token = Column("refreshToken", String, nullable=True)
    scope = Column(String, nullable=True)                           # e.g. "repo,read:user"
    expires_at = Column("expiresAt", DateTime, nullable=True)

    created_at = Column("createdAt", DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column("updatedAt", DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", backref="accounts")
