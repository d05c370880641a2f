"""Account domain package: the user records billing reads for ownership checks."""

from .models import Base, User
from .repository import create_user, get_active_user, get_user_by_id

__all__ = ["Base", "User", "create_user", "get_active_user", "get_user_by_id"]
