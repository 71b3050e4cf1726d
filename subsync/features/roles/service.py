"""
subsync/features/roles/service.py

Role assignment service.

Roles are granted to users through the role_assignments table. Callers are
expected to read get_user_roles() before changing anything: assigning a held
role or unassigning a missing one is an error, not a no-op.
"""

from typing import List
from sqlalchemy import select, insert, delete
from sqlalchemy.exc import IntegrityError

from subsync.core.database import get_db_session, roles, role_assignments
from subsync.core.errors import ConflictError, NotFoundError
from subsync.core.logging import log_event
from subsync.core.metrics import role_changes_total
from subsync.models.role import Role


class RoleService:
    def get_role(self, role_id: str) -> Role:
        with get_db_session() as session:
            row = session.execute(select(roles).where(roles.c.id == role_id)).first()
        if not row:
            raise NotFoundError(f"Role {role_id} not found", code="role_not_found")
        return Role(id=row.id, name=row.name)

    def get_user_roles(self, user_id: str) -> List[Role]:
        with get_db_session() as session:
            rows = session.execute(
                select(roles.c.id, roles.c.name)
                .select_from(role_assignments.join(roles, role_assignments.c.role_id == roles.c.id))
                .where(role_assignments.c.user_id == user_id)
                .order_by(role_assignments.c.assigned_at, role_assignments.c.id)
            ).fetchall()
        return [Role(id=row.id, name=row.name) for row in rows]

    def assign(self, user_id: str, role_id: str) -> None:
        """
        Grant a role to a user.

        Raises:
            NotFoundError: If the role does not exist
            ConflictError: If the user already holds the role
        """
        self.get_role(role_id)
        try:
            with get_db_session() as session:
                session.execute(insert(role_assignments).values(user_id=user_id, role_id=role_id))
        except IntegrityError:
            raise ConflictError(f"User {user_id} already has role {role_id}", code="role_already_assigned")

        role_changes_total.inc(labels={"action": "assign"})
        log_event("info", "role.assigned", user_id=user_id, extra={"role_id": role_id})

    def unassign(self, user_id: str, role_id: str) -> None:
        """
        Revoke a role from a user.

        Raises:
            NotFoundError: If the user does not hold the role
        """
        with get_db_session() as session:
            result = session.execute(
                delete(role_assignments).where(
                    role_assignments.c.user_id == user_id,
                    role_assignments.c.role_id == role_id,
                )
            )
            if result.rowcount == 0:
                raise NotFoundError(f"User {user_id} does not have role {role_id}", code="role_not_assigned")

        role_changes_total.inc(labels={"action": "unassign"})
        log_event("info", "role.unassigned", user_id=user_id, extra={"role_id": role_id})
