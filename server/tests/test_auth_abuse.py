"""Tests for the auth abuse service that wraps the gate for login flows."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.core.abuse_gate import AttemptOutcome, GateAction, GateReason, KeyKind
from app.core.errors import AuthBlockedError, CaptchaInvalidError, CaptchaRequiredError
from app.services.auth_abuse import AuthAbuseService, normalize_identity, origin_key_for


def _make_settings(enabled: bool = True, include_user_agent: bool = False):
    settings = MagicMock()
    settings.is_abuse_gate_enabled = enabled
    settings.abuse_origin_include_user_agent = include_user_agent
    return settings


def _fail(service: AuthAbuseService, identity, origin, times):
    for _ in range(times):
        service.report(identity, origin, AttemptOutcome.FAILURE)


class TestNormalizeIdentity:
    def test_lowercases_and_trims(self):
        assert normalize_identity("  Alice@Example.COM ") == "alice@example.com"

    def test_blank_is_anonymous(self):
        assert normalize_identity("   ") is None
        assert normalize_identity(None) is None


class TestOriginKey:
    def test_plain_ip(self):
        assert origin_key_for("203.0.113.5") == "203.0.113.5"

    def test_missing_ip(self):
        assert origin_key_for(None) == "unknown"
        assert origin_key_for("  ") == "unknown"

    def test_user_agent_hash_appended(self):
        key = origin_key_for("203.0.113.5", "Mozilla/5.0")
        ip, digest = key.split("|")
        assert ip == "203.0.113.5"
        assert len(digest) == 16
        assert key == origin_key_for("203.0.113.5", "Mozilla/5.0")
        assert key != origin_key_for("203.0.113.5", "curl/8.0")

    def test_service_ignores_user_agent_unless_enabled(self, gate):
        assert AuthAbuseService(gate, _make_settings()).origin_for("1.2.3.4", "ua") == "1.2.3.4"
        service = AuthAbuseService(gate, _make_settings(include_user_agent=True))
        assert service.origin_for("1.2.3.4", "ua").startswith("1.2.3.4|")


@pytest.mark.asyncio
class TestGuard:
    async def test_clean_attempt_allowed(self, gate):
        service = AuthAbuseService(gate, _make_settings())
        decision = await service.guard("a@x.com", "203.0.113.5")
        assert decision.action is GateAction.ALLOW

    async def test_blocked_origin_raises(self, gate):
        service = AuthAbuseService(gate, _make_settings())
        _fail(service, None, "203.0.113.5", 10)

        with pytest.raises(AuthBlockedError) as exc_info:
            await service.guard("u1", "203.0.113.5", captcha_token="solved")

        assert exc_info.value.status_code == 429
        assert exc_info.value.code == "AUTH_BLOCKED"
        assert exc_info.value.headers["Retry-After"] == str(int(gate.policy.window_seconds))

    async def test_challenge_without_token_requires_captcha(self, gate):
        service = AuthAbuseService(gate, _make_settings())
        _fail(service, "a@x.com", "203.0.113.5", 3)

        with pytest.raises(CaptchaRequiredError) as exc_info:
            await service.guard("a@x.com", "203.0.113.5")
        assert exc_info.value.code == "CAPTCHA_REQUIRED"

    @patch(
        "app.services.auth_abuse.verify_captcha_token",
        new_callable=AsyncMock,
        return_value=True,
    )
    async def test_challenge_with_valid_token_passes(self, mock_verify, gate):
        service = AuthAbuseService(gate, _make_settings())
        _fail(service, "a@x.com", "203.0.113.5", 3)

        decision = await service.guard(
            "a@x.com", "203.0.113.5", captcha_token="solved", remote_ip="203.0.113.5"
        )

        assert decision.action is GateAction.CHALLENGE
        assert decision.reason is GateReason.HIGH_FAILURE_RATE_IDENTITY
        mock_verify.assert_awaited_once_with("solved", "203.0.113.5")

    @patch(
        "app.services.auth_abuse.verify_captcha_token",
        new_callable=AsyncMock,
        return_value=False,
    )
    async def test_challenge_with_bad_token_rejected(self, mock_verify, gate):
        service = AuthAbuseService(gate, _make_settings())
        _fail(service, "a@x.com", "203.0.113.5", 3)

        with pytest.raises(CaptchaInvalidError):
            await service.guard("a@x.com", "203.0.113.5", captcha_token="forged")

    @patch("app.services.auth_abuse.verify_captcha_token", new_callable=AsyncMock)
    async def test_allowed_attempt_never_verifies_token(self, mock_verify, gate):
        service = AuthAbuseService(gate, _make_settings())
        await service.guard("a@x.com", "203.0.113.5", captcha_token="unused")
        mock_verify.assert_not_awaited()

    async def test_identity_is_normalized(self, gate):
        service = AuthAbuseService(gate, _make_settings())
        _fail(service, "Victim@X.com", "10.0.0.1", 10)

        with pytest.raises(AuthBlockedError):
            await service.guard(" victim@x.COM", "10.9.9.9")

    async def test_disabled_gate_always_allows(self, gate):
        service = AuthAbuseService(gate, _make_settings(enabled=False))
        gate_service = AuthAbuseService(gate, _make_settings())
        _fail(gate_service, None, "203.0.113.5", 10)

        decision = await service.guard(None, "203.0.113.5")
        assert decision.action is GateAction.ALLOW


class TestReport:
    def test_records_normalized_identity(self, gate):
        service = AuthAbuseService(gate, _make_settings())
        service.report("A@X.com", "203.0.113.5", AttemptOutcome.SUCCESS)

        window = gate.get_window(KeyKind.IDENTITY, "a@x.com")
        assert window.total_count == 1
        assert window.failure_count == 0

    def test_disabled_gate_records_nothing(self, gate):
        service = AuthAbuseService(gate, _make_settings(enabled=False))
        service.report("a@x.com", "203.0.113.5", AttemptOutcome.FAILURE)
        assert len(gate) == 0
