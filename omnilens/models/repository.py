# omnilens/models/repository.py
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, UniqueConstraint
from omnilens.core.db import Base


class Repository(Base):
    __tablename__ = "repositories"
    __table_args__ = (UniqueConstraint("user_id", "slug", name="repositories_user_slug_unique"),)

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(String, ForeignKey("user.id", ondelete="CASCADE"), index=True, nullable=False)

    slug = Column(String(255), nullable=False, index=True)     # "owner-repo"
    repo_path = Column(String(255), nullable=False)            # "owner/repo"
    display_name = Column(String(255), nullable=False)
    html_url = Column(Text, nullable=False)
    default_branch = Column(String(100), nullable=False)
    avatar_url = Column(Text, nullable=True)
    visibility = Column(String(20), nullable=False, default="public")

    added_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "slug": self.slug,
            "repoPath": self.repo_path,
            "displayName": self.display_name,
            "htmlUrl": self.html_url,
            "defaultBranch": self.default_branch,
            "avatarUrl": self.avatar_url,
            "visibility": self.visibility,
            "addedAt": self.added_at.isoformat() if self.added_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
