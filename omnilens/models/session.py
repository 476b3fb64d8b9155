# omnilens/models/session.py
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from omnilens.core.db import Base

class AuthSession(Base):
    __tablename__ = "session"

    id = Column(String, primary_key=True)
    token = Column(String, unique=True, nullable=False)
    user_id = Column("userId", String, ForeignKey("user.id", ondelete="CASCADE"), index=True, nullable=False)
    expires_at = Column("expiresAt", DateTime, nullable=False)
    ip_address = Column("ipAddress", String, nullable=True)
    user_agent = Column("userAgent", String, nullable=True)

    created_at = Column("createdAt", DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column("updatedAt", DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", backref="sessions")
