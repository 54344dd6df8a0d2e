"""
Team Visibility Filter.

Decides, per sub-query, whether an actor may see it and post messages on
it, and which actions each role may take at all. Role behaviour is a
capability object looked up by the closed ``Role`` enum; call sites ask the
capability instead of branching on role names.

Routing rule: a sub-query is visible (and allows messaging) for a team iff
its ``marked_for_team`` equals that team or equals ``"both"``. Sales and
Credit are further limited to the branch they have accepted for their team.
"""

import enum
import logging
from dataclasses import dataclass

from querydesk.core.exceptions import ForbiddenError
from querydesk.services import branch_assignment_service

logger = logging.getLogger(__name__)


class Role(str, enum.Enum):
    ORIGINATOR = "originator"
    SALES = "sales"
    CREDIT = "credit"
    AUTHORITY = "authority"
    ADMIN = "admin"


# Team names shown in chat and audit messages
TEAM_DISPLAY_NAMES = {
    Role.ORIGINATOR: "Operations",
    Role.SALES: "Sales",
    Role.CREDIT: "Credit",
    Role.AUTHORITY: "Management",
    Role.ADMIN: "Admin",
}


@dataclass(frozen=True)
class Actor:
    """The user an operation runs as."""

    employee_id: str
    name: str
    role: Role
    permissions: tuple | None = None

    @classmethod
    def from_user(cls, user) -> "Actor":
        perms = user.permissions
        return cls(
            employee_id=user.employee_id,
            name=user.full_name,
            role=Role(user.role),
            permissions=tuple(perms) if perms is not None else None,
        )

    @property
    def team(self) -> str:
        return TEAM_DISPLAY_NAMES[self.role]

    @property
    def capability(self) -> "Capability":
        return get_capability(self.role)


def allows_messaging(marked_for_team: str | None, team: str | None) -> bool:
    """Routing rule for one sub-query. No team filter means no restriction."""
    if not team:
        return True
    tag = (marked_for_team or "both").lower()
    return tag == "both" or tag == team.strip().lower()


# ── Capabilities ─────────────────────────────────────────────────────────────

class Capability:
    """Unrestricted view; actions limited to ``actions``."""

    actions: frozenset = frozenset()
    team_tag: str | None = None
    branch_scoped = False

    def can_act(self, action: str) -> bool:
        return action in self.actions

    def can_view(self, item, branch_code: str | None = None) -> bool:
        return True

    def allows_messaging(self, item) -> bool:
        return True


class OriginatorCapability(Capability):
    actions = frozenset({"create_query", "change_status", "request_approval", "chat", "revert"})


class AuthorityCapability(Capability):
    actions = frozenset({"decide_approval", "change_status", "chat"})


class AdminCapability(Capability):
    actions = frozenset({"assign_branch"})


class DownstreamCapability(Capability):
    """Sales / Credit: routed items only, and only on the accepted branch."""

    actions = frozenset({"change_status", "chat", "revert"})
    branch_scoped = True

    def __init__(self, team_tag: str):
        self.team_tag = team_tag

    def allows_messaging(self, item) -> bool:
        return allows_messaging(item.marked_for_team, self.team_tag)

    def can_view(self, item, branch_code: str | None = None) -> bool:
        if branch_code is None:
            return False
        return item.loan_query.branch_code == branch_code and self.allows_messaging(item)


_CAPABILITIES = {
    Role.ORIGINATOR: OriginatorCapability(),
    Role.SALES: DownstreamCapability("sales"),
    Role.CREDIT: DownstreamCapability("credit"),
    Role.AUTHORITY: AuthorityCapability(),
    Role.ADMIN: AdminCapability(),
}


def get_capability(role) -> Capability:
    return _CAPABILITIES[Role(role)]


# ── Enforcement helpers ──────────────────────────────────────────────────────

def accepted_branch_code(actor: Actor) -> str | None:
    """Branch code the actor is limited to, or None when not branch scoped."""
    cap = actor.capability
    if not cap.branch_scoped:
        return None
    assignment = branch_assignment_service.get_accepted(actor.employee_id, cap.team_tag)
    return assignment.branch_code if assignment else None


def ensure_can_act(actor: Actor, action: str) -> None:
    if not actor.capability.can_act(action):
        logger.warning(
            "Denied %s for %s (%s)", action, actor.name, actor.role.value,
            extra={"user_id": actor.employee_id, "action": action},
        )
        raise ForbiddenError(actor.name, action, f"role '{actor.role.value}' lacks this capability")


def ensure_items_visible(actor: Actor, items, action: str) -> None:
    """Branch-scoped actors may only touch items routed to them on their branch."""
    cap = actor.capability
    if not cap.branch_scoped:
        return
    branch_code = accepted_branch_code(actor)
    if branch_code is None:
        raise ForbiddenError(actor.name, action, "no accepted branch for this team")
    hidden = [item.id for item in items if not cap.can_view(item, branch_code)]
    if hidden:
        raise ForbiddenError(
            actor.name, action, f"sub-queries {hidden} are not routed to {actor.team} on branch {branch_code}",
        )


def annotate_query(query, team: str | None = None, items=None) -> dict:
    """Serialise a query with ``allow_messaging`` per item and overall."""
    items = query.items if items is None else items
    data = query.to_dict(items=items)
    for item_dict, item in zip(data["items"], items):
        item_dict["allow_messaging"] = allows_messaging(item.marked_for_team, team)
    data["allow_messaging"] = any(i["allow_messaging"] for i in data["items"])
    return data
