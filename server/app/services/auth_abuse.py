"""Abuse checks an authentication handler runs around credential verification.

Typical login flow::

    decision = await auth_abuse.guard(email, origin, captcha_token, client_ip)
    ok = verify_credentials(...)
    auth_abuse.report(email, origin, AttemptOutcome.SUCCESS if ok else AttemptOutcome.FAILURE)

``guard`` raises the typed errors from ``app.core.errors`` so the handler
only has to let them propagate.
"""

import hashlib
import logging

from app.core.abuse_gate import ALLOW, AbuseGate, AttemptOutcome, GateAction, GateDecision
from app.core.config import Settings, get_settings
from app.core.errors import AuthBlockedError, CaptchaInvalidError, CaptchaRequiredError
from app.services.captcha import verify_captcha_token

logger = logging.getLogger(__name__)

UNKNOWN_ORIGIN = "unknown"


def normalize_identity(raw: str | None) -> str | None:
    """Lowercase and trim an email / account id; blank means anonymous."""
    if raw is None:
        return None
    identity = raw.strip().lower()
    return identity or None


def origin_key_for(ip: str | None, user_agent: str | None = None) -> str:
    """Origin key from the client IP, optionally bound to a user-agent hash."""
    origin = (ip or "").strip() or UNKNOWN_ORIGIN
    if user_agent:
        digest = hashlib.sha256(user_agent.encode()).hexdigest()[:16]
        origin = f"{origin}|{digest}"
    return origin


class AuthAbuseService:
    def __init__(self, gate: AbuseGate, settings: Settings | None = None) -> None:
        self.gate = gate
        self.settings = settings or get_settings()

    @property
    def enabled(self) -> bool:
        return self.settings.is_abuse_gate_enabled

    def origin_for(self, ip: str | None, user_agent: str | None = None) -> str:
        if not self.settings.abuse_origin_include_user_agent:
            user_agent = None
        return origin_key_for(ip, user_agent)

    async def guard(
        self,
        identity: str | None,
        origin: str,
        captcha_token: str | None = None,
        remote_ip: str | None = None,
    ) -> GateDecision:
        """Evaluate an incoming attempt and enforce the decision.

        Raises:
            AuthBlockedError: the identity or origin is blocked.
            CaptchaRequiredError: a challenge is due and no token was sent.
            CaptchaInvalidError: a challenge is due and the token failed verification.
        """
        if not self.enabled:
            return ALLOW

        identity = normalize_identity(identity)
        decision = self.gate.evaluate(identity, origin)

        if decision.action is GateAction.BLOCK:
            logger.warning(
                "Blocking auth attempt origin=%s identity=%s reason=%s",
                origin,
                identity,
                decision.reason.value,
            )
            raise AuthBlockedError(retry_after=int(self.gate.policy.window_seconds))

        if decision.action is GateAction.CHALLENGE:
            logger.info(
                "Challenging auth attempt origin=%s identity=%s reason=%s",
                origin,
                identity,
                decision.reason.value,
            )
            if not captcha_token:
                raise CaptchaRequiredError()
            if not await verify_captcha_token(captcha_token, remote_ip):
                raise CaptchaInvalidError()

        return decision

    def report(self, identity: str | None, origin: str, outcome: AttemptOutcome) -> None:
        """Record the final outcome of an attempt that passed ``guard``."""
        if not self.enabled:
            return
        self.gate.record(normalize_identity(identity), origin, outcome)
