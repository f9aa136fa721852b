# Overview: Ownership/role decisions for opportunity access.

"""
Authorization Guard

RULES:
- read / update / delete: admin, or the opportunity's owner (created_by)
- create: any authenticated caller; the new row's created_by is the caller
- unauthenticated (no caller id): denied for everything

The guard is a pure function of its arguments. Callers pass a freshly read
record and a freshly read role every time; nothing here remembers a previous
decision, since ownership or role can change between two requests.
"""

from __future__ import annotations

from dataclasses import dataclass

from crm.models import ROLE_ADMIN


OP_READ = "read"
OP_CREATE = "create"
OP_UPDATE = "update"
OP_DELETE = "delete"
OPERATIONS = frozenset({OP_READ, OP_CREATE, OP_UPDATE, OP_DELETE})


@dataclass(frozen=True)
class Actor:
    """Identity of the caller for a single request."""
    user_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


class PermissionDenied(Exception):
    """
    Caller may not perform the operation.

    The message is the same whether or not the target record exists;
    operation and record_id are kept for logging only.
    """

    def __init__(self, operation: str, record_id: str | None = None):
        self.operation = operation
        self.record_id = record_id
        super().__init__("Not authorized")


def is_allowed(caller_id, caller_role, operation: str, record=None) -> bool:
    if operation not in OPERATIONS:
        raise ValueError(f"Unknown operation '{operation}'")

    if caller_id is None:
        return False

    if operation == OP_CREATE:
        return True

    if record is None:
        return False

    if caller_role == ROLE_ADMIN:
        return True

    return record.created_by == caller_id


def authorize(caller_id, caller_role, operation: str, record=None) -> None:
    """
    Raises:
        PermissionDenied: the caller may not perform `operation` on `record`
    """
    if not is_allowed(caller_id, caller_role, operation, record):
        raise PermissionDenied(operation, getattr(record, "id", None))
