# tests/core/test_authorization.py
"""
Tests for the super admin gate and its audit trail.
"""
import logging

import pytest

from src.core.security import AuthorizationGate
from src.core.exceptions import ConfigurationError, Unauthorized

ADMIN_ID = "6650827406"


class TestExactMatch:

    def test_configured_admin_is_authorized(self, gate):
        assert gate.is_authorized("6650827406") is True

    def test_other_id_is_denied_and_audited(self, gate, caplog):
        with caplog.at_level(logging.INFO, logger="audit"):
            assert gate.is_authorized("6650827407", action="enter_admin_mode") is False

        denials = [r for r in caplog.records if r.name == "audit" and "DENIED" in r.getMessage()]
        assert len(denials) == 1
        assert "6650827407" in denials[0].getMessage()
        assert "enter_admin_mode" in denials[0].getMessage()

        last = gate.recent_decisions[-1]
        assert last.granted is False
        assert last.action == "enter_admin_mode"
        assert last.timestamp is not None

    @pytest.mark.parametrize("near_match", [
        6650827406,
        " 6650827406",
        "6650827406 ",
        "06650827406",
        "6650827406.0",
        "665082740",
        b"6650827406",
        "",
        None,
        True,
    ])
    def test_near_matches_are_denied(self, gate, near_match):
        assert gate.is_authorized(near_match) is False

    def test_grant_is_audited(self, gate, caplog):
        with caplog.at_level(logging.INFO, logger="audit"):
            gate.is_authorized(ADMIN_ID, action="admin_status")

        grants = [r for r in caplog.records if "GRANTED" in r.getMessage()]
        assert len(grants) == 1
        assert "admin_status" in grants[0].getMessage()
        assert gate.recent_decisions[-1].granted is True

    def test_integer_admin_identity(self):
        gate = AuthorizationGate(42)

        assert gate.is_authorized(42) is True
        assert gate.is_authorized("42") is False
        assert gate.is_authorized(True) is False

    def test_every_call_rechecks(self, gate):
        assert gate.is_authorized(ADMIN_ID)
        assert not gate.is_authorized("1")
        assert gate.is_authorized(ADMIN_ID)
        assert len(gate.recent_decisions) == 3


class TestRequire:

    def test_require_passes_for_admin(self, gate):
        gate.require(ADMIN_ID, action="broadcast")

    def test_require_raises_for_others(self, gate):
        with pytest.raises(Unauthorized) as exc_info:
            gate.require("123", action="broadcast")

        assert exc_info.value.action == "broadcast"
        assert exc_info.value.details["user_id"] == "123"


class TestConfiguration:

    @pytest.mark.parametrize("bad_id", [None, "", True])
    def test_rejects_unusable_admin_id(self, bad_id):
        with pytest.raises(ConfigurationError):
            AuthorizationGate(bad_id)

    def test_audit_trail_is_bounded(self):
        gate = AuthorizationGate(ADMIN_ID, audit_size=3)
        for i in range(10):
            gate.is_authorized(str(i))

        assert len(gate.recent_decisions) == 3
        assert gate.get_metrics() == {"recent_grants": 0, "recent_denials": 3}
