"""Unit tests for role parsing and the authorization policy."""

import pytest

from app.core.authorization import (
    Permission,
    Principal,
    Role,
    authorize,
    parse_roles,
    system_principal,
)
from app.core.errors import AuthorizationError


class TestParseRoles:
    def test_plain_role_names(self) -> None:
        assert parse_roles(["citizen", "admin"]) == {Role.CITIZEN, Role.ADMIN}

    def test_provider_group_names(self) -> None:
        assert parse_roles(["DICT_OFFICER"]) == {Role.OFFICER}
        assert parse_roles(["DICT_ORGANIZATION_VOUCHER"]) >= {Role.ORGANIZATION_VOUCHER}

    def test_unknown_values_ignored(self) -> None:
        assert parse_roles(["superuser", "", 42]) == frozenset()

    def test_officer_in_a_name_is_not_a_role(self) -> None:
        assert parse_roles(["officerjohn@example.com"]) == frozenset()


class TestPrincipal:
    def test_from_claims_list(self) -> None:
        principal = Principal.from_claims({"sub": "u1", "roles": ["ADMIN"]}, "roles")
        assert principal.subject_id == "u1"
        assert principal.roles == {Role.ADMIN}

    def test_from_claims_single_string(self) -> None:
        principal = Principal.from_claims({"sub": "u1", "groups": "citizen"}, "groups")
        assert principal.roles == {Role.CITIZEN}

    def test_from_claims_without_roles(self) -> None:
        principal = Principal.from_claims({"sub": "u1"}, "roles")
        assert principal.roles == frozenset()
        assert principal.is_reviewer is False

    @pytest.mark.parametrize(
        ("role", "reviewer"),
        [
            (Role.CITIZEN, False),
            (Role.ORGANIZATION_VOUCHER, False),
            (Role.OFFICER, True),
            (Role.ADMIN, True),
        ],
    )
    def test_is_reviewer(self, role: Role, reviewer: bool) -> None:
        assert Principal("u1", frozenset({role})).is_reviewer is reviewer

    def test_system_principal_is_admin(self) -> None:
        principal = system_principal("system:auto-approval")
        assert principal.has_permission(Permission.ADMINISTER_CREDENTIALS)


class TestAuthorize:
    def test_permitted(self) -> None:
        authorize(Principal("u1", frozenset({Role.OFFICER})), Permission.REVIEW_APPLICATIONS)

    def test_denied(self) -> None:
        with pytest.raises(AuthorizationError) as exc_info:
            authorize(Principal("u1", frozenset({Role.OFFICER})), Permission.ADMINISTER_CREDENTIALS)
        assert exc_info.value.status_code == 403
        assert exc_info.value.details["required"] == "administer_credentials"

    def test_no_roles_cannot_submit(self) -> None:
        with pytest.raises(AuthorizationError):
            authorize(Principal("u1"), Permission.SUBMIT_APPLICATION)
