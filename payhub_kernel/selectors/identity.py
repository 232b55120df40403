"""SQL-backed IdentityProvider reading the users and roles tables."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from payhub_kernel.domain.workflow import UserProfile, UserScope
from payhub_kernel.models.directory import UserModel


class SqlIdentityProvider:
    """Default identity provider.  Unknown users resolve to None."""

    def __init__(self, session: Session):
        self.session = session

    def resolve_user(self, user_id: UUID) -> UserScope | None:
        user = self.session.get(UserModel, user_id)
        if user is None:
            return None
        return user.to_scope()

    def describe_users(self, user_ids: frozenset[UUID]) -> dict[UUID, UserProfile]:
        if not user_ids:
            return {}
        rows = self.session.execute(
            select(UserModel).where(UserModel.id.in_(list(user_ids)))
        ).scalars()
        return {u.id: u.to_profile() for u in rows}
