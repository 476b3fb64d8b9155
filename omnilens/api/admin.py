# omnilens/api/admin.py
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from omnilens.api.deps import get_current_user, require_admin
from omnilens.core.db import get_db
from omnilens.models import User
from omnilens.services import repo_storage

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/users", dependencies=[Depends(require_admin)])
def list_users(
    user_id: str | None = Query(default=None, alias="userId"),
    include_stats: bool = Query(default=False, alias="includeStats"),
    db: Session = Depends(get_db),
):
    if user_id:
        user = repo_storage.get_user_by_id(db, user_id)
        if not user:
            raise HTTPException(status_code=404, detail="User not found")
        body = repo_storage.user_to_dict(user)
        if include_stats:
            body["stats"] = repo_storage.get_user_stats(db, user.id)
        return {"user": body}

    if include_stats:
        users = repo_storage.get_all_users_with_stats(db)
    else:
        users = [repo_storage.user_to_dict(u) for u in repo_storage.get_all_users(db)]
    return {"users": users, "count": len(users)}


@router.get("/user-ids")
def list_user_ids(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    user_ids = repo_storage.get_all_user_ids(db)
    return {"userIds": user_ids, "count": len(user_ids), "message": f"Found {len(user_ids)} users"}
