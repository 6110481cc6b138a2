from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Protocol

from .errors import PermissionDeniedError

ROLE_WIRE_PREFIX = "ROLE_"


class RolePermissionSource(Protocol):
    def permissions_for(self, role_names: Iterable[str]) -> set[str]: ...


@dataclass(frozen=True)
class Role:
    name: str

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("role name must not be empty")

    @staticmethod
    def from_wire(value: str) -> "Role":
        """Build a role from an authority string such as ``ROLE_ADMIN``."""
        normalized = value.strip()
        if normalized.startswith(ROLE_WIRE_PREFIX):
            normalized = normalized[len(ROLE_WIRE_PREFIX):]
        return Role(normalized)


@dataclass(frozen=True)
class Principal:
    principal_id: str
    roles: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if not self.principal_id or not str(self.principal_id).strip():
            raise ValueError("principal_id must not be empty")
        object.__setattr__(self, "roles", frozenset(self.roles))

    @staticmethod
    def from_roles(principal_id: str, roles: Iterable[Role | str]) -> "Principal":
        names = {role.name if isinstance(role, Role) else Role(role).name for role in roles}
        return Principal(principal_id=principal_id, roles=frozenset(names))

    def is_admin(self, admin_role: str) -> bool:
        return admin_role in self.roles


class PermissionResolver:
    """Resolve which resource types a set of roles may see or book.

    The role-permission table is read on every call, so grants and revocations
    take effect on the next operation.
    """

    def __init__(self, source: RolePermissionSource) -> None:
        self.source = source

    def allowed_resource_types(self, role_names: Iterable[str]) -> frozenset[str]:
        names = {name for name in role_names if name}
        if not names:
            return frozenset()
        return frozenset(self.source.permissions_for(names))

    def can_access(self, role_names: Iterable[str], resource_type_id: str) -> bool:
        return resource_type_id in self.allowed_resource_types(role_names)

    def authorize(self, role_names: Iterable[str], resource_type_id: str) -> None:
        if not self.can_access(role_names, resource_type_id):
            raise PermissionDeniedError(resource_type_id)
