# omnilens/services/github_token_service.py
from sqlalchemy.orm import Session

from omnilens.models import Account

GITHUB_PROVIDER_ID = "github"


def get_token_for_user(db: Session, user_id: str) -> str | None:
    account = (
        db.query(Account)
        .filter(Account.user_id == user_id, Account.provider_id == GITHUB_PROVIDER_ID)
        .first()
    )
    return account.access_token if account and account.access_token else None
