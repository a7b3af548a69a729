from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from modvault.errors import Forbidden, Unauthorized
from modvault.schemas import ItemRecord, Principal, Role


class Operation(StrEnum):
    CREATE = "create"
    REPLACE = "replace"
    DELETE = "delete"
    READ = "read"
    LIST = "list"
    LIST_ALL = "list_all"


class DenyReason(StrEnum):
    NOT_AUTHENTICATED = "not_authenticated"
    INSUFFICIENT_ROLE = "insufficient_role"
    NOT_VISIBLE = "not_visible"


ROLE_TABLE: dict[Operation, frozenset[Role]] = {
    Operation.CREATE: frozenset({Role.ADMIN, Role.MODERATOR, Role.EDITOR}),
    Operation.REPLACE: frozenset({Role.ADMIN, Role.MODERATOR}),
    Operation.DELETE: frozenset({Role.ADMIN}),
    Operation.LIST_ALL: frozenset(Role),
}


@dataclass(slots=True, frozen=True)
class Decision:
    allowed: bool
    reason: DenyReason | None = None
    detail: str = ""

    def raise_for_denial(self) -> None:
        if self.allowed:
            return
        if self.reason == DenyReason.NOT_AUTHENTICATED:
            raise Unauthorized(self.detail or "Not logged in")
        raise Forbidden(self.detail or "Access denied")


_ALLOW = Decision(allowed=True)


def authorize(
    principal: Principal,
    operation: Operation,
    item: ItemRecord | None = None,
) -> Decision:
    if operation == Operation.LIST:
        return _ALLOW

    if operation == Operation.READ:
        if item is not None and item.is_public:
            return _ALLOW
        if principal.is_authenticated:
            return _ALLOW
        return Decision(
            allowed=False,
            reason=DenyReason.NOT_VISIBLE,
            detail="File is not public",
        )

    if not principal.is_authenticated:
        return Decision(
            allowed=False,
            reason=DenyReason.NOT_AUTHENTICATED,
            detail="Not logged in",
        )

    allowed_roles = ROLE_TABLE[operation]
    if principal.role not in allowed_roles:
        return Decision(
            allowed=False,
            reason=DenyReason.INSUFFICIENT_ROLE,
            detail=f"role {principal.role} may not {operation}",
        )
    return _ALLOW


def require(
    principal: Principal,
    operation: Operation,
    item: ItemRecord | None = None,
) -> None:
    authorize(principal, operation, item).raise_for_denial()
