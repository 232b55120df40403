"""
Module: payhub_kernel.models.directory
Responsibility: Users and roles as seen by the workflow engine: role codes
    for stage assignment, project scope for visibility, and display data
    for the approval history.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Role codes are unique.
    - ``view_own_project_only`` lives on the role; the project set lives on
      the user.  A restricted user with no projects sees nothing.
"""

from sqlalchemy import JSON, Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payhub_kernel.db.base import Base


class RoleModel(Base):
    """A role code that stages can be assigned to."""

    __tablename__ = "roles"

    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    view_own_project_only: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Role {self.code}>"


class UserModel(Base):
    """An application user."""

    __tablename__ = "users"

    full_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    role_code: Mapped[str | None] = mapped_column(
        String(50), ForeignKey("roles.code"), nullable=True,
    )
    # Assigned project ids (JSON array of ints)
    project_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    role: Mapped["RoleModel | None"] = relationship("RoleModel", lazy="joined")

    def __repr__(self) -> str:
        return f"<User {self.id} {self.email}>"

    def to_scope(self):
        """Role and project scope used for visibility checks."""
        from payhub_kernel.domain.workflow import UserScope

        return UserScope(
            user_id=self.id,
            role_code=self.role_code,
            view_own_project_only=bool(self.role and self.role.view_own_project_only),
            project_ids=frozenset(self.project_ids or ()),
        )

    def to_profile(self):
        """Display data for the approval history."""
        from payhub_kernel.domain.workflow import UserProfile

        return UserProfile(user_id=self.id, full_name=self.full_name, email=self.email)
