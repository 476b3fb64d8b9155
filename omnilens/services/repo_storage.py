# omnilens/services/repo_storage.py
"""Persistence helpers for user-owned repositories and their workflows.

Every query is scoped by ``user_id``; the same slug can exist once per user.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from omnilens.core.config import settings
from omnilens.models import Repository, User, Workflow

logger = logging.getLogger(__name__)


@dataclass
class AddRepoResult:
    success: bool
    error: str | None = None
    repo: Repository | None = None


# ----------------------------
# Repositories
# ----------------------------
def load_user_repos(db: Session, user_id: str) -> list[Repository]:
    return (
        db.query(Repository)
        .filter(Repository.user_id == user_id)
        .order_by(Repository.added_at.desc(), Repository.id.desc())
        .all()
    )


def get_user_repo(db: Session, slug: str, user_id: str) -> Repository | None:
    return (
        db.query(Repository)
        .filter(Repository.slug == slug, Repository.user_id == user_id)
        .first()
    )


def add_user_repo(db: Session, repo: Repository, user_id: str) -> AddRepoResult:
    limit = settings.MAX_REPOSITORIES_PER_USER
    count = db.query(func.count(Repository.id)).filter(Repository.user_id == user_id).scalar() or 0
    if count >= limit:
        return AddRepoResult(
            success=False,
            error=(
                f"Maximum repository limit reached. You can add up to {limit} repositories. "
                "Please remove some repositories before adding new ones."
            ),
        )

    if get_user_repo(db, repo.slug, user_id):
        return AddRepoResult(success=False, error="Repository already exists")

    repo.user_id = user_id
    db.add(repo)
    try:
        db.commit()
    except IntegrityError:
        # concurrent insert of the same slug
        db.rollback()
        return AddRepoResult(success=False, error="Repository already exists")
    db.refresh(repo)
    return AddRepoResult(success=True, repo=repo)


def remove_user_repo(db: Session, slug: str, user_id: str) -> Repository | None:
    repo = get_user_repo(db, slug, user_id)
    if not repo:
        return None
    db.delete(repo)
    db.commit()
    return repo


def clear_user_repos(db: Session, user_id: str) -> None:
    db.query(Repository).filter(Repository.user_id == user_id).delete(synchronize_session=False)
    db.commit()


# ----------------------------
# Workflows
# ----------------------------
def save_workflows(db: Session, repo_slug: str, workflows: list[dict], user_id: str) -> None:
    """Upsert ``workflows`` and drop stored ones GitHub no longer reports.

    Each item needs ``id``, ``name``, ``path`` and ``state``. An empty list
    removes every stored workflow of the repository.
    """
    now = datetime.utcnow()
    existing = {
        wf.workflow_id: wf
        for wf in db.query(Workflow).filter(Workflow.repo_slug == repo_slug, Workflow.user_id == user_id)
    }

    current_ids = set()
    for item in workflows:
        workflow_id = int(item["id"])
        current_ids.add(workflow_id)
        row = existing.get(workflow_id)
        if row:
            row.workflow_name = item["name"]
            row.workflow_path = item["path"]
            row.workflow_state = item["state"]
            row.updated_at = now
        else:
            db.add(
                Workflow(
                    user_id=user_id,
                    repo_slug=repo_slug,
                    workflow_id=workflow_id,
                    workflow_name=item["name"],
                    workflow_path=item["path"],
                    workflow_state=item["state"],
                    created_at=now,
                    updated_at=now,
                )
            )

    for workflow_id, row in existing.items():
        if workflow_id not in current_ids:
            db.delete(row)

    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Error saving workflows for %s", repo_slug)
        raise


def get_workflows(db: Session, repo_slug: str, user_id: str) -> list[Workflow]:
    return (
        db.query(Workflow)
        .filter(Workflow.repo_slug == repo_slug, Workflow.user_id == user_id)
        .order_by(Workflow.workflow_name)
        .all()
    )


def delete_workflows(db: Session, repo_slug: str, user_id: str) -> None:
    db.query(Workflow).filter(Workflow.repo_slug == repo_slug, Workflow.user_id == user_id).delete(
        synchronize_session=False
    )
    db.commit()


# ----------------------------
# Users (admin views)
# ----------------------------
def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "emailVerified": bool(user.email_verified),
        "image": user.image,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
        "updatedAt": user.updated_at.isoformat() if user.updated_at else None,
        "githubId": user.github_id,
        "avatarUrl": user.avatar_url,
    }


def get_all_users(db: Session) -> list[User]:
    return db.query(User).order_by(User.created_at.desc()).all()


def get_all_user_ids(db: Session) -> list[str]:
    return [row.id for row in db.query(User.id).order_by(User.created_at.desc())]


def get_user_by_id(db: Session, user_id: str) -> User | None:
    return db.query(User).filter(User.id == user_id).first()


def get_user_stats(db: Session, user_id: str) -> dict:
    repository_count = db.query(func.count(Repository.id)).filter(Repository.user_id == user_id).scalar() or 0
    workflow_count = db.query(func.count(Workflow.id)).filter(Workflow.user_id == user_id).scalar() or 0
    last_repo = db.query(func.max(Repository.updated_at)).filter(Repository.user_id == user_id).scalar()
    last_workflow = db.query(func.max(Workflow.updated_at)).filter(Workflow.user_id == user_id).scalar()

    activity = [ts for ts in (last_repo, last_workflow) if ts is not None]
    last_activity = max(activity) if activity else None

    return {
        "repositoryCount": int(repository_count),
        "workflowCount": int(workflow_count),
        "lastActivity": last_activity.isoformat() if last_activity else None,
    }


def get_all_users_with_stats(db: Session) -> list[dict]:
    return [{**user_to_dict(user), **get_user_stats(db, user.id)} for user in get_all_users(db)]
