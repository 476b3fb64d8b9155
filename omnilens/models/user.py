# omnilens/models/user.py
from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime
from omnilens.core.db import Base

class User(Base):
    # Rows are written by the auth library; column names follow its schema
    __tablename__ = "user"

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=True)
    email_verified = Column("emailVerified", Boolean, nullable=False, default=False)
    image = Column(String, nullable=True)
    github_id = Column("githubId", String, nullable=True)
    avatar_url = Column("avatarUrl", String, nullable=True)

    created_at = Column("createdAt", DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column("updatedAt", DateTime, default=datetime.utcnow, nullable=False)
