"""
Campaign Gate Domain Models

Actors, roles, tiers and the typed resource handles that access
decisions are made against.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Union

from .exceptions import InvalidArgumentError


class ActorStatus(Enum):
    """Actor lifecycle states."""
    ACTIVE = "active"
    SUSPENDED = "suspended"


class ResourceType(Enum):
    """Kinds of resource an action can target."""
    CAMPAIGNS = "campaigns"
    AI_SUGGESTIONS = "ai-suggestions"
    GOVERNANCE = "governance"
    USERS = "users"
    TELEMETRY = "telemetry"
    SYSTEM = "system"
    EXPORT = "export"
    PLANNER = "planner"
    STORES = "stores"
    ROLES = "roles"
    TIERS = "tiers"
    AUDIT = "audit"
    RULES = "rules"


class Verb(Enum):
    """Actions an actor can request."""
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    APPROVE = "approve"
    REJECT = "reject"
    ASSIGN = "assign"
    EXPORT = "export"
    ADMIN = "admin"
    WRITE = "write"
    DRAFT = "draft"


def _coerce_enum(enum_cls, value, label: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidArgumentError(
            f"Unknown {label}: {value!r}",
            problems=[f"{label} must be one of {[m.value for m in enum_cls]}"],
        )


def resource_type(value: Union[str, ResourceType]) -> ResourceType:
    """Parse a resource type, rejecting unknown kinds."""
    return _coerce_enum(ResourceType, value, "resource type")


def verb(value: Union[str, Verb]) -> Verb:
    """Parse a verb, rejecting unknown actions."""
    return _coerce_enum(Verb, value, "verb")


@dataclass(frozen=True)
class Role:
    """Functional permission bundle."""
    id: str
    name: str
    permissions: FrozenSet[str] = field(default_factory=frozenset)
    description: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "permissions", frozenset(self.permissions))


@dataclass(frozen=True)
class Tier:
    """Operational-scope permission bundle, independent of role."""
    id: str
    name: str
    permissions: FrozenSet[str] = field(default_factory=frozenset)
    description: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "permissions", frozenset(self.permissions))


@dataclass
class Actor:
    """An authenticated user or automation identity."""
    id: str
    first_name: str = ""
    last_name: str = ""
    display_name: str = ""
    email: str = ""
    wrike_name: str = ""
    roles: Dict[str, bool] = field(default_factory=dict)
    permissions: Dict[str, bool] = field(default_factory=dict)
    teams: List[str] = field(default_factory=list)
    role_id: Optional[str] = None
    tier_id: Optional[str] = None
    status: ActorStatus = ActorStatus.ACTIVE

    @property
    def expected_wrike_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def has_valid_wrike_name(self) -> bool:
        """Export identity must equal first and last name exactly."""
        return self.wrike_name == self.expected_wrike_name

    @property
    def explicit_grants(self) -> FrozenSet[str]:
        return frozenset(p for p, granted in self.permissions.items() if granted)

    @property
    def held_roles(self) -> List[str]:
        return [name for name, held in self.roles.items() if held]

    def has_role(self, role: str) -> bool:
        return bool(self.roles.get(role))

    def has_any_role(self, roles: Iterable[str]) -> bool:
        return any(self.has_role(r) for r in roles)

    @classmethod
    def from_document(cls, actor_id: str, doc: Mapping[str, Any]) -> "Actor":
        """Build an actor from a persisted ``users/{id}`` document."""
        first_name = doc.get("firstName", "") or ""
        last_name = doc.get("lastName", "") or ""
        status = doc.get("status", ActorStatus.ACTIVE.value)
        return cls(
            id=actor_id,
            first_name=first_name,
            last_name=last_name,
            display_name=doc.get("displayName") or f"{first_name} {last_name}".strip(),
            email=doc.get("email", "") or "",
            wrike_name=doc.get("wrikeName", "") or "",
            roles=dict(doc.get("roles") or {}),
            permissions=dict(doc.get("permissions") or {}),
            teams=list(doc.get("teams") or []),
            role_id=doc.get("roleId"),
            tier_id=doc.get("tierId"),
            status=_coerce_enum(ActorStatus, status, "actor status"),
        )

    def to_document(self) -> Dict[str, Any]:
        """Render the persisted ``users/{id}`` shape."""
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "displayName": self.display_name,
            "email": self.email,
            "wrikeName": self.wrike_name,
            "roles": dict(self.roles),
            "permissions": dict(self.permissions),
            "teams": list(self.teams),
            "roleId": self.role_id,
            "tierId": self.tier_id,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class _TypedHandle:
    type: ResourceType
    id: str
    owner_id: Optional[str] = None
    team_id: Optional[str] = None
    status: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "type", resource_type(self.type))


@dataclass(frozen=True)
class Resource(_TypedHandle):
    """What an action targets."""


@dataclass(frozen=True)
class Record(_TypedHandle):
    """The object actually being mutated."""
