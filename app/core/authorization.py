"""Single authorization policy for every mutating workflow operation.

Roles come only from the identity provider's role claim. Nothing is inferred
from login names or e-mail addresses.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from app.core.errors import AuthorizationError


class Role(str, Enum):
    CITIZEN = "citizen"
    OFFICER = "officer"
    ORGANIZATION_VOUCHER = "organization_voucher"
    ADMIN = "admin"


class Permission(str, Enum):
    SUBMIT_APPLICATION = "submit_application"
    REVIEW_APPLICATIONS = "review_applications"
    ADMINISTER_CREDENTIALS = "administer_credentials"


POLICY: dict[Permission, frozenset[Role]] = {
    Permission.SUBMIT_APPLICATION: frozenset(
        {Role.CITIZEN, Role.OFFICER, Role.ORGANIZATION_VOUCHER, Role.ADMIN}
    ),
    Permission.REVIEW_APPLICATIONS: frozenset({Role.OFFICER, Role.ADMIN}),
    Permission.ADMINISTER_CREDENTIALS: frozenset({Role.ADMIN}),
}


@dataclass(frozen=True)
class Principal:
    subject_id: str
    roles: frozenset[Role] = field(default_factory=frozenset)

    @classmethod
    def from_claims(cls, claims: dict[str, Any], role_claim: str) -> "Principal":
        raw_roles = claims.get(role_claim) or []
        if isinstance(raw_roles, str):
            raw_roles = [raw_roles]
        return cls(subject_id=str(claims["sub"]), roles=parse_roles(raw_roles))

    def has_permission(self, permission: Permission) -> bool:
        return bool(self.roles & POLICY[permission])

    @property
    def is_reviewer(self) -> bool:
        return self.has_permission(Permission.REVIEW_APPLICATIONS)


def parse_roles(values: Iterable[Any]) -> frozenset[Role]:
    """Map role claim values to known roles, ignoring anything unrecognised.

    Provider group names are upper-case with an optional prefix
    (e.g. ``DICT_OFFICER``), so matching is on the normalized suffix.
    """
    roles: set[Role] = set()
    for value in values:
        normalized = str(value).strip().lower()
        for role in Role:
            if normalized == role.value or normalized.endswith(f"_{role.value}"):
                roles.add(role)
    return frozenset(roles)


def authorize(principal: Principal, permission: Permission) -> None:
    """Raise ``AuthorizationError`` unless the principal holds the permission."""
    if not principal.has_permission(permission):
        raise AuthorizationError(details={"required": permission.value})


SYSTEM_ROLES = frozenset({Role.ADMIN})


def system_principal(subject_id: str) -> Principal:
    """Principal for automated approvals and maintenance scripts."""
    return Principal(subject_id=subject_id, roles=SYSTEM_ROLES)
