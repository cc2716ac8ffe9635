"""Tests for scope resolution rules."""

from consent_engine.core.scopes import effective_grant, resolve_scopes
from tests.conftest import FIXED_NOW, make_fake_policy


class TestResolveScopes:
    """Tests for resolve_scopes against a policy with one required scope."""

    def test_all_requested_scopes_granted(self) -> None:
        """Requesting every scope grants every scope."""
        resolution = resolve_scopes(make_fake_policy(), ["data_collection", "marketing", "analytics"], None, FIXED_NOW)

        assert resolution.status == "granted"
        assert set(resolution.granted_scopes) == {"data_collection", "marketing", "analytics"}
        assert resolution.revoked_scopes == {}
        assert resolution.revoked_at is None

    def test_missing_optional_scope_is_revoked_individually(self) -> None:
        """Unrequested optional scopes are revoked; the record stays granted."""
        resolution = resolve_scopes(make_fake_policy(), ["data_collection"], None, FIXED_NOW)

        assert resolution.status == "granted"
        assert set(resolution.revoked_scopes) == {"marketing", "analytics"}
        assert resolution.revoked_scopes["marketing"].revoked_at == FIXED_NOW
        assert resolution.granted_scopes["data_collection"].required is True

    def test_losing_required_scope_revokes_everything(self) -> None:
        """A revoked required scope clears every grant."""
        resolution = resolve_scopes(
            make_fake_policy(),
            ["data_collection", "marketing"],
            ["data_collection"],
            FIXED_NOW,
        )

        assert resolution.status == "revoked"
        assert resolution.granted_scopes == {}
        assert set(resolution.revoked_scopes) == {"data_collection", "marketing", "analytics"}
        assert resolution.revoked_at == FIXED_NOW


def test_effective_grant_removes_revoked_keys() -> None:
    """Explicit revocations win over grants of the same key."""
    assert effective_grant(["a", "b"], ["b", "c"]) == {"a"}
    assert effective_grant(["a"], None) == {"a"}
