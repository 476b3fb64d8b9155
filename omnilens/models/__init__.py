# omnilens/models/__init__.py
from omnilens.models.user import User
from omnilens.models.session import AuthSession
from omnilens.models.account import Account
from omnilens.models.repository import Repository
from omnilens.models.workflow import Workflow

__all__ = ["User", "AuthSession", "Account", "Repository", "Workflow"]
