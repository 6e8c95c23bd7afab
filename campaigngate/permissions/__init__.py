"""
Campaign Gate - Permission Resolver

Role-based and tier-based access control (RBAC/TBAC).

The effective permission set is the union of role grants, tier grants and
the actor's explicit grants; it is recomputed on every check and never
cached. Access decisions run an ordered list of named policy rules through
a single combinator:

1. actor_present         - no actor, no access
2. permission_granted    - "{resource}:{verb}" must be in the effective set
3. team_scope            - record team must be one of the actor's teams
4. ownership             - update/delete need ownership; admins bypass
5. service_account_clamp - automation identities get a fixed narrow scope

Each rule returns ALLOW, DENY or ABSTAIN. The first ALLOW or DENY decides;
if every rule abstains the action is allowed. Nothing here performs I/O.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import (
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from ..core.config import PermissionConfig
from ..core.models import (
    Actor,
    Record,
    Resource,
    ResourceType,
    Role,
    Tier,
    Verb,
    verb as parse_verb,
)

logger = logging.getLogger(__name__)

Permission = str


class Decision(Enum):
    """Outcome of a single policy rule."""
    ALLOW = "allow"
    DENY = "deny"
    ABSTAIN = "abstain"


@dataclass(frozen=True)
class AccessRequest:
    """Everything a policy rule may look at."""
    actor: Optional[Actor]
    verb: Verb
    resource: Resource
    record: Optional[Record]
    effective: FrozenSet[Permission]
    config: PermissionConfig

    @property
    def permission(self) -> Permission:
        return f"{self.resource.type.value}:{self.verb.value}"


@dataclass(frozen=True)
class AccessDecision:
    """Final decision plus the rule that produced it."""
    allowed: bool
    rule: str
    permission: Permission

    def __bool__(self) -> bool:
        return self.allowed


PolicyRule = Tuple[str, Callable[[AccessRequest], Decision]]


# ============================================================================
# Seed catalogs
# ============================================================================

_ALL_CAMPAIGN_VERBS = [
    "create", "read", "update", "delete",
    "approve", "reject", "assign", "export",
]

DEFAULT_ROLES: Dict[str, Role] = {
    role.id: role
    for role in [
        Role(
            id="admin",
            name="Admin",
            permissions=(
                [f"campaigns:{v}" for v in _ALL_CAMPAIGN_VERBS]
                + [f"ai-suggestions:{v}" for v in ("create", "read", "update", "delete")]
                + [f"governance:{v}" for v in ("create", "read", "update", "delete")]
                + [f"users:{v}" for v in ("create", "read", "update", "delete")]
                + [
                    "system:admin",
                    "export:write",
                    "roles:read",
                    "roles:write",
                    "tiers:read",
                    "tiers:write",
                    "rules:write",
                    "audit:read",
                ]
            ),
            description="Full system access with governance and configuration rights",
        ),
        Role(
            id="manager",
            name="Manager",
            permissions=[
                "campaigns:read",
                "campaigns:update",
                "campaigns:approve",
                "campaigns:reject",
                "campaigns:assign",
                "ai-suggestions:read",
                "governance:read",
                "governance:update",
                "export:write",
                "audit:read",
            ],
            description="Regional manager with approval rights",
        ),
        Role(
            id="editor",
            name="Editor",
            permissions=[
                "campaigns:create",
                "campaigns:read",
                "campaigns:update",
                "campaigns:export",
                "ai-suggestions:read",
            ],
            description="Creates campaigns, submits them for review and exports them",
        ),
        Role(
            id="reviewer",
            name="Reviewer",
            permissions=[
                "campaigns:read",
                "campaigns:approve",
                "campaigns:reject",
                "campaigns:assign",
                "governance:read",
                "governance:update",
            ],
            description="Approves or rejects submitted campaigns",
        ),
        Role(
            id="planner",
            name="Planner",
            permissions=[
                "campaigns:create",
                "campaigns:read",
                "campaigns:update",
                "ai-suggestions:read",
                "ai-suggestions:create",
                "planner:write",
            ],
            description="Campaign planning and activity creation",
        ),
        Role(
            id="analyst",
            name="Analyst",
            permissions=["campaigns:read", "ai-suggestions:read", "governance:read"],
        ),
        Role(
            id="viewer",
            name="Viewer",
            permissions=["campaigns:read", "ai-suggestions:read", "planner:read"],
            description="Read-only access to dashboards and reports",
        ),
        Role(
            id="ai-system",
            name="AI System",
            permissions=[
                "campaigns:read",
                "ai-suggestions:create",
                "ai-suggestions:update",
                "telemetry:create",
            ],
            description="Constrained automation identity",
        ),
    ]
}

DEFAULT_TIERS: Dict[str, Tier] = {
    tier.id: tier
    for tier in [
        Tier(id="local", name="Local", description="Single store or program scope"),
        Tier(
            id="regional",
            name="Regional",
            permissions=["export:write"],
            description="Multiple stores or programs in defined region",
        ),
        Tier(
            id="global",
            name="Global",
            permissions=["roles:read", "tiers:read", "audit:read"],
            description="Cross-program and enterprise-wide access",
        ),
    ]
}


# ============================================================================
# Set algebra
# ============================================================================


def effective_permissions(
    role: Optional[Role],
    tier: Optional[Tier],
    actor: Optional[Actor] = None,
) -> FrozenSet[Permission]:
    """
    Union of role, tier and explicit actor grants.

    There is no subtraction at this layer; a missing role or tier simply
    contributes nothing.
    """
    perms = set()
    if role is not None:
        perms |= role.permissions
    if tier is not None:
        perms |= tier.permissions
    if actor is not None:
        perms |= actor.explicit_grants
    return frozenset(perms)


def has_permission(
    effective: Iterable[Permission],
    needed: Union[Permission, Sequence[Permission]],
) -> bool:
    """True if every needed permission is present (AND)."""
    effective = effective if isinstance(effective, (set, frozenset)) else set(effective)
    if isinstance(needed, str):
        return needed in effective
    return all(p in effective for p in needed)


def has_any_permission(
    effective: Iterable[Permission],
    needed: Sequence[Permission],
) -> bool:
    """True if at least one needed permission is present (OR)."""
    effective = effective if isinstance(effective, (set, frozenset)) else set(effective)
    if isinstance(needed, str):
        return needed in effective
    return any(p in effective for p in needed)


# ============================================================================
# Policy rules
# ============================================================================


def rule_actor_present(request: AccessRequest) -> Decision:
    if request.actor is None:
        return Decision.DENY
    return Decision.ABSTAIN


def rule_permission_granted(request: AccessRequest) -> Decision:
    if not has_permission(request.effective, request.permission):
        return Decision.DENY
    return Decision.ABSTAIN


def rule_team_scope(request: AccessRequest) -> Decision:
    # No team on the record, or an actor without teams, is unrestricted.
    record = request.record
    if record is None or not record.team_id or not request.actor.teams:
        return Decision.ABSTAIN
    if record.team_id not in request.actor.teams:
        return Decision.DENY
    return Decision.ABSTAIN


def rule_ownership(request: AccessRequest) -> Decision:
    if request.verb not in (Verb.UPDATE, Verb.DELETE):
        return Decision.ABSTAIN

    actor = request.actor
    if actor.has_role(request.config.admin_role):
        return Decision.ALLOW

    record = request.record
    if record is not None and record.owner_id and record.owner_id != actor.id:
        return Decision.DENY
    if request.resource.owner_id and request.resource.owner_id != actor.id:
        return Decision.DENY
    return Decision.ABSTAIN


def rule_service_account_clamp(request: AccessRequest) -> Decision:
    config = request.config
    if not request.actor.has_role(config.service_account_role):
        return Decision.ABSTAIN
    if (
        request.verb.value in config.service_account_verbs
        and request.resource.type.value in config.service_account_resources
    ):
        return Decision.ALLOW
    return Decision.DENY


POLICY_RULES: List[PolicyRule] = [
    ("actor_present", rule_actor_present),
    ("permission_granted", rule_permission_granted),
    ("team_scope", rule_team_scope),
    ("ownership", rule_ownership),
    ("service_account_clamp", rule_service_account_clamp),
]


def evaluate(
    request: AccessRequest,
    rules: Sequence[PolicyRule] = POLICY_RULES,
) -> AccessDecision:
    """Run rules in order; the first ALLOW or DENY wins, default allow."""
    for name, rule in rules:
        decision = rule(request)
        if decision is Decision.ABSTAIN:
            continue
        return AccessDecision(
            allowed=decision is Decision.ALLOW,
            rule=name,
            permission=request.permission,
        )
    return AccessDecision(allowed=True, rule="default", permission=request.permission)


def explain(
    actor: Optional[Actor],
    verb: Union[str, Verb],
    resource: Resource,
    record: Optional[Record] = None,
    permissions: Optional[Iterable[Permission]] = None,
    config: Optional[PermissionConfig] = None,
) -> AccessDecision:
    """
    Decide an access request and report which rule decided it.

    Args:
        actor: Acting user, or None when unauthenticated
        verb: Requested action
        resource: Target handle
        record: Object actually being mutated, if any
        permissions: Effective permission set; defaults to the actor's
            role and tier catalog grants plus explicit grants
        config: Rule parameters

    Returns:
        AccessDecision
    """
    config = config or PermissionConfig()
    if permissions is None:
        effective = _catalog_permissions(actor, DEFAULT_ROLES, DEFAULT_TIERS)
    else:
        effective = frozenset(permissions)

    request = AccessRequest(
        actor=actor,
        verb=parse_verb(verb),
        resource=resource,
        record=record,
        effective=effective,
        config=config,
    )
    decision = evaluate(request)
    logger.debug(
        f"Access {'allowed' if decision.allowed else 'denied'} for "
        f"{actor.id if actor else None} on {decision.permission} "
        f"(rule: {decision.rule})"
    )
    return decision


def can(
    actor: Optional[Actor],
    verb: Union[str, Verb],
    resource: Resource,
    record: Optional[Record] = None,
    permissions: Optional[Iterable[Permission]] = None,
    config: Optional[PermissionConfig] = None,
) -> bool:
    """Decide whether ``actor`` may perform ``verb`` on ``resource``."""
    return explain(actor, verb, resource, record, permissions, config).allowed


def _catalog_permissions(
    actor: Optional[Actor],
    roles: Mapping[str, Role],
    tiers: Optional[Mapping[str, Tier]] = None,
) -> FrozenSet[Permission]:
    if actor is None:
        return frozenset()

    perms = set(actor.explicit_grants)
    role_ids = list(actor.held_roles)
    if actor.role_id:
        role_ids.append(actor.role_id)
    for role_id in role_ids:
        role = roles.get(role_id)
        if role is not None:
            perms |= role.permissions

    if tiers is not None and actor.tier_id:
        tier = tiers.get(actor.tier_id)
        if tier is not None:
            perms |= tier.permissions

    return frozenset(perms)


class PermissionResolver:
    """
    Resolves actors against a role and tier catalog.

    Holds configuration only; no per-request state.
    """

    def __init__(
        self,
        roles: Optional[Mapping[str, Role]] = None,
        tiers: Optional[Mapping[str, Tier]] = None,
        config: Optional[PermissionConfig] = None,
    ):
        self.roles = dict(roles if roles is not None else DEFAULT_ROLES)
        self.tiers = dict(tiers if tiers is not None else DEFAULT_TIERS)
        self.config = config or PermissionConfig()

    def effective_for(self, actor: Optional[Actor]) -> FrozenSet[Permission]:
        """Effective permissions for an actor: role flags, role id, tier, grants."""
        return _catalog_permissions(actor, self.roles, self.tiers)

    def explain(
        self,
        actor: Optional[Actor],
        verb: Union[str, Verb],
        resource: Resource,
        record: Optional[Record] = None,
    ) -> AccessDecision:
        return explain(
            actor,
            verb,
            resource,
            record,
            permissions=self.effective_for(actor),
            config=self.config,
        )

    def can(
        self,
        actor: Optional[Actor],
        verb: Union[str, Verb],
        resource: Resource,
        record: Optional[Record] = None,
    ) -> bool:
        return self.explain(actor, verb, resource, record).allowed

    def can_resource(
        self,
        actor: Optional[Actor],
        verb: Union[str, Verb],
        resource_type: Union[str, ResourceType],
        resource_id: str = "*",
    ) -> bool:
        """Shorthand for checks that carry no ownership or team context."""
        return self.can(actor, verb, Resource(type=resource_type, id=resource_id))


__all__ = [
    "AccessDecision",
    "AccessRequest",
    "DEFAULT_ROLES",
    "DEFAULT_TIERS",
    "Decision",
    "POLICY_RULES",
    "Permission",
    "PermissionResolver",
    "can",
    "effective_permissions",
    "evaluate",
    "explain",
    "has_any_permission",
    "has_permission",
]
