"""
Role based authorization for Invited+.

Each role owns a table of ``Permission(resource, action, condition)`` entries.
A condition refines a role-level grant down to one resource instance, e.g.
"only the creator of this event may update it".

Usage:
    policy = build_policy()                      # once per process
    authz = Authorizer(actor, policy)            # once per request
    if not authz.has_permission("tasks", "update", task):
        raise AuthorizationDenied("tasks", "update")

Resolution rules:
    - no entry for (resource, action) under the actor's role => deny
    - entry without condition                              => allow
    - entry with condition and resource data               => condition(actor, data)
    - entry with condition but no resource data            => deny (fail closed)
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from .roles import Role


@dataclass(frozen=True)
class Actor:
    """The authenticated user a decision is made for."""

    id: str
    role: Role
    name: str = ""
    email: str = ""


Condition = Callable[[Actor, Any], bool]


@dataclass(frozen=True)
class Permission:

    resource: str
    action: str
    condition: Optional[Condition] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.resource, self.action)


class AuthorizationDenied(Exception):
    """Raised by ``Authorizer.require`` when the actor may not perform an action."""

    def __init__(self, resource: str, action: str, message: Optional[str] = None):
        self.resource = resource
        self.action = action
        super().__init__(message or f"Not allowed to {action} {resource}")


# --- Resource field access -----------------------------------------------------
def _get(resource: Any, key: str) -> Any:
    if resource is None:
        return None
    if isinstance(resource, Mapping):
        return resource.get(key)
    return getattr(resource, key, None)

def ref_id(resource: Any, *names: str) -> Optional[str]:
    """
    Read a related user's id from a resource row or response body.

    For each name tries ``<name>_id`` then the nested ``<name>.id`` shape, so
    ``ref_id(task, "assignee")`` works for both ``{"assignee_id": "u1"}`` and
    ``{"assignee": {"id": "u1"}}``.
    """

    for name in names:
        value = _get(resource, f"{name}_id")
        if value is None:
            value = _get(_get(resource, name), "id")
        if value is not None:
            return str(value)
    return None

def is_creator(actor: Actor, resource: Any) -> bool:
    # Events use their organizer as the creator anchor
    owner = ref_id(resource, "created_by", "organizer")
    return owner is not None and owner == str(actor.id)

def is_assignee(actor: Actor, resource: Any) -> bool:
    assignee = ref_id(resource, "assignee")
    return assignee is not None and assignee == str(actor.id)

def is_creator_or_assignee(actor: Actor, resource: Any) -> bool:
    return is_creator(actor, resource) or is_assignee(actor, resource)


# --- Policy --------------------------------------------------------------------
class PermissionPolicy:
    """Immutable role -> permission table mapping. Build once, share freely."""

    def __init__(self, tables: Mapping[Role, Iterable[Permission]]):
        missing = [r for r in Role if r not in tables]
        if missing:
            raise ValueError(f"Permission tables missing for roles: {missing}")

        frozen: Dict[Role, Mapping[Tuple[str, str], Permission]] = {}
        for role, entries in tables.items():
            index: Dict[Tuple[str, str], Permission] = {}
            for p in entries:
                if p.key in index:
                    raise ValueError(f"Duplicate permission {p.key} for role {role.value}")
                index[p.key] = p
            frozen[role] = MappingProxyType(index)
        self._tables = MappingProxyType(frozen)

    def entry(self, role: Role, resource: str, action: str) -> Optional[Permission]:
        table = self._tables.get(role)
        if table is None:
            raise ValueError(f"Unhandled role: {role!r}")
        return table.get((resource, action))

    def entries(self, role: Role) -> Tuple[Permission, ...]:
        table = self._tables.get(role)
        if table is None:
            raise ValueError(f"Unhandled role: {role!r}")
        return tuple(table.values())

    def pairs(self) -> FrozenSet[Tuple[str, str]]:
        """Every (resource, action) pair granted to any role."""
        return frozenset(key for table in self._tables.values() for key in table)


_ORGANIZER = (
    Permission("events", "create"),
    Permission("events", "read"),
    Permission("events", "update", is_creator),
    Permission("events", "delete", is_creator),

    Permission("tasks", "create"),
    Permission("tasks", "read"),
    Permission("tasks", "update", is_creator_or_assignee),
    Permission("tasks", "delete", is_creator),

    Permission("polls", "create"),
    Permission("polls", "read"),
    Permission("polls", "update", is_creator),
    Permission("polls", "delete", is_creator),

    Permission("chat", "read"),
    Permission("chat", "write"),
)

_GUEST = (
    Permission("events", "read"),
    Permission("events", "rsvp"),

    Permission("tasks", "read"),
    Permission("tasks", "update", is_assignee),

    Permission("polls", "read"),
    Permission("polls", "vote"),

    Permission("chat", "read"),
    Permission("chat", "write"),
)

_ADMIN_ONLY = (
    Permission("users", "create"),
    Permission("users", "read"),
    Permission("users", "update"),
    Permission("users", "delete"),
    Permission("users", "manage_roles"),

    Permission("events", "manage_all"),
    Permission("tasks", "assign"),

    Permission("admin", "access_panel"),
    Permission("admin", "view_analytics"),
    Permission("admin", "manage_platform"),
)


def build_policy() -> PermissionPolicy:
    """
    Build the default Invited+ policy.

    ADMIN gets every pair any other role has, unconditionally, plus the
    admin-only entries.
    """

    admin: Dict[Tuple[str, str], Permission] = {}
    for p in _ADMIN_ONLY + _ORGANIZER + _GUEST:
        admin.setdefault(p.key, Permission(p.resource, p.action))

    return PermissionPolicy({
        Role.ADMIN: admin.values(),
        Role.ORGANIZER: _ORGANIZER,
        Role.GUEST: _GUEST,
    })


# --- Resolver ------------------------------------------------------------------
class Authorizer:
    """Answers permission questions for one actor against one policy."""

    def __init__(self, actor: Actor, policy: PermissionPolicy):
        self.actor = actor
        self.policy = policy

    def has_permission(self, resource: str, action: str, resource_data: Any = None) -> bool:
        permission = self.policy.entry(self.actor.role, resource, action)

        if permission is None:
            return False

        if permission.condition is None:
            return True

        if resource_data is None:
            return False

        return bool(permission.condition(self.actor, resource_data))

    def require(self, resource: str, action: str, resource_data: Any = None) -> None:
        if not self.has_permission(resource, action, resource_data):
            raise AuthorizationDenied(resource, action)

    def capabilities(self) -> Dict[str, Dict[str, str]]:
        """
        Role-level capability map for UI gating.

        Values are "allow" (unconditional), "own" (granted for resources the
        actor created or is assigned to) or "deny".
        """

        out: Dict[str, Dict[str, str]] = {}
        for resource, action in sorted(self.policy.pairs()):
            permission = self.policy.entry(self.actor.role, resource, action)
            if permission is None:
                value = "deny"
            elif permission.condition is None:
                value = "allow"
            else:
                value = "own"
            out.setdefault(resource, {})[action] = value
        return out

    # Convenience predicates
    def can_create_event(self) -> bool:
        return self.has_permission("events", "create")

    def can_create_task(self) -> bool:
        return self.has_permission("tasks", "create")

    def can_create_poll(self) -> bool:
        return self.has_permission("polls", "create")

    def can_access_admin(self) -> bool:
        return self.has_permission("admin", "access_panel")

    def can_manage_event(self, event: Any) -> bool:
        return self.has_permission("events", "update", event)

    def can_manage_task(self, task: Any) -> bool:
        return self.has_permission("tasks", "update", task)

    def can_manage_poll(self, poll: Any) -> bool:
        return self.has_permission("polls", "update", poll)

    def can_delete_event(self, event: Any) -> bool:
        return self.has_permission("events", "delete", event)

    def can_delete_task(self, task: Any) -> bool:
        return self.has_permission("tasks", "delete", task)

    def can_delete_poll(self, poll: Any) -> bool:
        return self.has_permission("polls", "delete", poll)

    def can_manage_users(self) -> bool:
        return self.has_permission("users", "manage_roles")

    def can_view_analytics(self) -> bool:
        return self.has_permission("admin", "view_analytics")

    def is_admin(self) -> bool:
        return self.actor.role is Role.ADMIN

    def is_organizer(self) -> bool:
        return self.actor.role is Role.ORGANIZER

    def is_guest(self) -> bool:
        return self.actor.role is Role.GUEST
