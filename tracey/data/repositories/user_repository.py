"""
User repository for Tracey.

User documents are keyed by the external auth uid rather than an ObjectId.
"""

from typing import Any, Optional

from tracey.data.models.user import User
from tracey.utils.constants import USERS_COLLECTION

from .base import BaseRepository, IdValue


class UserRepository(BaseRepository[User]):
    """Repository for user profile lookups."""

    @property
    def collection_name(self) -> str:
        return USERS_COLLECTION

    @property
    def model_class(self) -> type[User]:
        return User

    def _to_id(self, id_value: IdValue) -> Any:
        return str(id_value)


# Singleton instance
_user_repository: Optional[UserRepository] = None


def get_user_repository() -> UserRepository:
    """Get the user repository singleton instance."""
    global _user_repository
    if _user_repository is None:
        _user_repository = UserRepository()
    return _user_repository
