"""User repository - record store operations for user accounts"""

from typing import Any, Optional

from ...config import AIRTABLE_USERS_TABLE
from ...errors import RecordNotFound
from ...record_store import AirtableClient, lower_equals
from .models import EMAIL, User


class UserRepository:
    """Repository for the Markeb Media Users table"""

    def __init__(self, store: AirtableClient, table: str = AIRTABLE_USERS_TABLE):
        self.store = store
        self.table = table

    async def find_by_email(self, email: str) -> Optional[User]:
        if not email:
            return None
        record = await self.store.first(self.table, lower_equals(EMAIL, email))
        return User.from_record(record) if record else None

    async def get_by_email(self, email: str) -> User:
        user = await self.find_by_email(email)
        if not user:
            raise RecordNotFound("User not found")
        return user

    async def create(self, fields: dict[str, Any]) -> User:
        record = await self.store.create_record(self.table, fields)
        return User.from_record(record)

    async def update(self, record_id: str, fields: dict[str, Any]) -> User:
        record = await self.store.update_record(self.table, record_id, fields)
        return User.from_record(record)
