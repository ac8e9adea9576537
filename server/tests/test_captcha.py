"""Tests for Cloudflare Turnstile CAPTCHA verification."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from app.services.captcha import DEV_SITE_KEY, get_captcha_site_key, verify_captcha_token


def _make_settings(secret: str = "test-secret", production: bool = True, site_key: str = ""):
    settings = MagicMock()
    settings.turnstile_secret_key = secret
    settings.turnstile_site_key = site_key
    settings.is_production = production
    settings.captcha_verify_timeout_seconds = 5.0
    return settings


def _mock_client(mock_client_cls, payload=None, error=None):
    mock_response = MagicMock()
    mock_response.json.return_value = payload

    mock_client = AsyncMock()
    if error is not None:
        mock_client.post.side_effect = error
    else:
        mock_client.post.return_value = mock_response
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client_cls.return_value = mock_client
    return mock_client


@pytest.mark.asyncio
class TestVerifyCaptchaToken:
    @patch("app.services.captcha.get_settings")
    async def test_dev_mode_bypass_when_no_key(self, mock_settings):
        """In dev mode with no secret key, verification is skipped (returns True)."""
        mock_settings.return_value = _make_settings(secret="", production=False)

        assert await verify_captcha_token("any-token", "1.2.3.4") is True

    @patch("app.services.captcha.get_settings")
    async def test_production_rejects_without_key(self, mock_settings):
        """In production with no secret key, verification fails (security default)."""
        mock_settings.return_value = _make_settings(secret="", production=True)

        assert await verify_captcha_token("any-token", "1.2.3.4") is False

    @patch("app.services.captcha.httpx.AsyncClient")
    @patch("app.services.captcha.get_settings")
    async def test_valid_token_returns_true(self, mock_settings, mock_client_cls):
        mock_settings.return_value = _make_settings()
        mock_client = _mock_client(mock_client_cls, {"success": True})

        assert await verify_captcha_token("valid-token", "1.2.3.4") is True

        mock_client.post.assert_called_once()
        call_kwargs = mock_client.post.call_args
        assert call_kwargs[1]["data"]["secret"] == "test-secret"
        assert call_kwargs[1]["data"]["response"] == "valid-token"
        assert call_kwargs[1]["data"]["remoteip"] == "1.2.3.4"
        mock_client_cls.assert_called_once_with(timeout=5.0)

    @patch("app.services.captcha.httpx.AsyncClient")
    @patch("app.services.captcha.get_settings")
    async def test_invalid_token_returns_false(self, mock_settings, mock_client_cls):
        mock_settings.return_value = _make_settings()
        _mock_client(mock_client_cls, {"success": False, "error-codes": ["invalid-input"]})

        assert await verify_captcha_token("invalid-token") is False

    @patch("app.services.captcha.httpx.AsyncClient")
    @patch("app.services.captcha.get_settings")
    async def test_no_remoteip_omits_field(self, mock_settings, mock_client_cls):
        mock_settings.return_value = _make_settings(production=False)
        mock_client = _mock_client(mock_client_cls, {"success": True})

        await verify_captcha_token("token", None)

        call_kwargs = mock_client.post.call_args
        assert "remoteip" not in call_kwargs[1]["data"]

    @patch("app.services.captcha.httpx.AsyncClient")
    @patch("app.services.captcha.get_settings")
    async def test_empty_token_skips_network(self, mock_settings, mock_client_cls):
        mock_settings.return_value = _make_settings()

        assert await verify_captcha_token("") is False
        mock_client_cls.assert_not_called()

    @patch("app.services.captcha.httpx.AsyncClient")
    @patch("app.services.captcha.get_settings")
    async def test_oversized_token_rejected(self, mock_settings, mock_client_cls):
        mock_settings.return_value = _make_settings()

        assert await verify_captcha_token("x" * 5000) is False
        mock_client_cls.assert_not_called()

    @patch("app.services.captcha.httpx.AsyncClient")
    @patch("app.services.captcha.get_settings")
    async def test_network_error_returns_false(self, mock_settings, mock_client_cls):
        mock_settings.return_value = _make_settings()
        _mock_client(mock_client_cls, error=httpx.ConnectError("connection refused"))

        assert await verify_captcha_token("token", "1.2.3.4") is False

    @patch("app.services.captcha.httpx.AsyncClient")
    @patch("app.services.captcha.get_settings")
    async def test_non_json_response_returns_false(self, mock_settings, mock_client_cls):
        mock_settings.return_value = _make_settings()
        mock_client = _mock_client(mock_client_cls)
        mock_client.post.return_value.json.side_effect = ValueError("not json")

        assert await verify_captcha_token("token") is False


class TestCaptchaSiteKey:
    @patch("app.services.captcha.get_settings")
    def test_configured_key_returned(self, mock_settings):
        mock_settings.return_value = _make_settings(site_key="0x4AAAA-real")
        assert get_captcha_site_key() == "0x4AAAA-real"

    @patch("app.services.captcha.get_settings")
    def test_dev_falls_back_to_test_key(self, mock_settings):
        mock_settings.return_value = _make_settings(production=False)
        assert get_captcha_site_key() == DEV_SITE_KEY

    @patch("app.services.captcha.get_settings")
    def test_production_without_key_is_empty(self, mock_settings):
        mock_settings.return_value = _make_settings(production=True)
        assert get_captcha_site_key() == ""
