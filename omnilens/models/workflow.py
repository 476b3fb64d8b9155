# omnilens/models/workflow.py
from datetime import datetime
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, ForeignKey, UniqueConstraint
from omnilens.core.db import Base


class Workflow(Base):
    __tablename__ = "workflows"
    __table_args__ = (
        UniqueConstraint("user_id", "repo_slug", "workflow_id", name="workflows_user_repo_workflow_unique"),
    )

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(String, ForeignKey("user.id", ondelete="CASCADE"), index=True, nullable=False)

    repo_slug = Column(String(255), nullable=False, index=True)
    workflow_id = Column(BigInteger, nullable=False, index=True)    # GitHub workflow id
    workflow_name = Column(String(255), nullable=False)
    workflow_path = Column(String(500), nullable=False)            # ".github/workflows/ci.yml"
    workflow_state = Column(String(50), nullable=False)            # active, disabled_manually, ...

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.workflow_id,
            "name": self.workflow_name,
            "path": self.workflow_path,
            "state": self.workflow_state,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
