"""
auth/authz.py -- Declarative access requirements and their evaluation.

Every guarded operation declares exactly one AccessRequirement:

  NO_AUTH             -- public; a principal, if present, is not consulted.
  ANY_AUTH            -- any signed-in principal.
  requires(expr)      -- a signed-in principal whose role flags satisfy expr.

Role expressions are a small immutable tree built with & and |:

    requires(ADMIN)                  -- admin
    requires(ADMIN | PREMIUM_USER)   -- admin or premium
    requires(ADMIN & PREMIUM_USER)   -- admin and premium

Python gives & higher precedence than |, so ADMIN | PREMIUM_USER & X groups as
ADMIN | (PREMIUM_USER & X). Evaluation walks the tree; role lookups are plain
field reads on the principal with no side effects.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from auth.errors import ForbiddenError
from auth.models import SessionPrincipal


class Role(str, Enum):
    admin = "admin"
    premium_user = "premiumUser"


# Role -> SessionPrincipal attribute holding its flag.
_ROLE_FLAGS: dict[Role, str] = {
    Role.admin: "is_admin",
    Role.premium_user: "is_premium",
}


def role_flags(principal: SessionPrincipal) -> dict[Role, bool]:
    """Return the principal's role flags keyed by Role."""
    return {role: bool(getattr(principal, attr)) for role, attr in _ROLE_FLAGS.items()}


# ---------------------------------------------------------------------------
# Role expressions
# ---------------------------------------------------------------------------


class RoleExpr:
    """Base node of a role expression tree."""

    def evaluate(self, flags: dict[Role, bool]) -> bool:
        raise NotImplementedError

    def __and__(self, other: RoleExpr) -> RoleExpr:
        return AllOf((self, other))

    def __or__(self, other: RoleExpr) -> RoleExpr:
        return AnyOf((self, other))


@dataclass(frozen=True)
class HasRole(RoleExpr):
    role: Role

    def evaluate(self, flags: dict[Role, bool]) -> bool:
        return flags.get(self.role, False)

    def __str__(self) -> str:
        return self.role.value


@dataclass(frozen=True)
class AllOf(RoleExpr):
    operands: tuple[RoleExpr, ...]

    def evaluate(self, flags: dict[Role, bool]) -> bool:
        return all(op.evaluate(flags) for op in self.operands)

    def __str__(self) -> str:
        return "(" + " & ".join(str(op) for op in self.operands) + ")"


@dataclass(frozen=True)
class AnyOf(RoleExpr):
    operands: tuple[RoleExpr, ...]

    def evaluate(self, flags: dict[Role, bool]) -> bool:
        return any(op.evaluate(flags) for op in self.operands)

    def __str__(self) -> str:
        return "(" + " | ".join(str(op) for op in self.operands) + ")"


ADMIN = HasRole(Role.admin)
PREMIUM_USER = HasRole(Role.premium_user)


# ---------------------------------------------------------------------------
# Access requirements
# ---------------------------------------------------------------------------


class AccessKind(str, Enum):
    no_auth = "no_auth"
    any_auth = "any_auth"
    roles = "roles"


@dataclass(frozen=True)
class AccessRequirement:
    kind: AccessKind
    expr: RoleExpr | None = None

    def __post_init__(self) -> None:
        if (self.kind is AccessKind.roles) != (self.expr is not None):
            raise ValueError("A role expression is required for, and only for, role requirements.")

    def __str__(self) -> str:
        if self.kind is AccessKind.roles:
            return f"roles{self.expr}"
        return self.kind.value


NO_AUTH = AccessRequirement(AccessKind.no_auth)
ANY_AUTH = AccessRequirement(AccessKind.any_auth)


def requires(expr: RoleExpr) -> AccessRequirement:
    """Build a role requirement from an expression tree."""
    return AccessRequirement(AccessKind.roles, expr)


def authorize(requirement: AccessRequirement, principal: SessionPrincipal | None) -> bool:
    """Return True if `principal` satisfies `requirement`."""
    if requirement.kind is AccessKind.no_auth:
        return True
    if principal is None:
        return False
    if requirement.kind is AccessKind.any_auth:
        return True
    return requirement.expr.evaluate(role_flags(principal))


def check_access(requirement: AccessRequirement, principal: SessionPrincipal | None) -> None:
    """Raise ForbiddenError unless authorize() allows the call.

    The dispatcher calls this before the guarded body so a refused operation
    never starts.
    """
    if not authorize(requirement, principal):
        raise ForbiddenError(authenticated=principal is not None)
