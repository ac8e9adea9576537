from fastapi import APIRouter, Depends, HTTPException, Request

from app.api.deps import get_abuse_gate, get_auth_abuse_service
from app.core.abuse_gate import AbuseGate, KeyKind
from app.core.config import get_settings
from app.core.internal_auth import verify_internal_api_key
from app.core.rate_limit import as_ip_address, get_client_origin, limiter
from app.schemas.common import StatusResponse
from app.schemas.gate import (
    CaptchaSettings,
    GateDecisionOut,
    GateEvaluateRequest,
    GateRecordRequest,
    RiskWindowOut,
)
from app.services.auth_abuse import AuthAbuseService
from app.services.captcha import get_captcha_site_key

router = APIRouter()
# No per-IP rate limit: every gate call comes from the auth service address
gate_router = APIRouter(dependencies=[Depends(verify_internal_api_key)])
settings = get_settings()


@router.get("/captcha", response_model=CaptchaSettings)
@limiter.limit(lambda: f"{settings.public_rate_limit_per_minute}/minute")
def get_captcha_settings(request: Request) -> CaptchaSettings:
    """Public endpoint returning the Turnstile site key for the login widget."""
    return CaptchaSettings(captcha_site_key=get_captcha_site_key())


@gate_router.post("/evaluate", response_model=GateDecisionOut)
async def evaluate_attempt(
    request: Request,
    body: GateEvaluateRequest,
    service: AuthAbuseService = Depends(get_auth_abuse_service),
) -> GateDecisionOut:
    """Decide whether an attempt may proceed to credential verification.

    Blocked and unsolved-challenge attempts come back as error envelopes
    (AUTH_BLOCKED, CAPTCHA_REQUIRED, CAPTCHA_INVALID).
    """
    ip = body.origin or get_client_origin(request)
    origin = service.origin_for(ip, body.user_agent)
    # Origins may be opaque keys; Turnstile only gets a real address
    decision = await service.guard(
        body.identity, origin, body.captcha_token, remote_ip=as_ip_address(ip)
    )
    return GateDecisionOut(action=decision.action, reason=decision.reason)


@gate_router.post("/record", response_model=StatusResponse)
def record_attempt(
    request: Request,
    body: GateRecordRequest,
    service: AuthAbuseService = Depends(get_auth_abuse_service),
) -> StatusResponse:
    """Record the final outcome of an attempt. Call exactly once per attempt."""
    ip = body.origin or get_client_origin(request)
    service.report(body.identity, service.origin_for(ip, body.user_agent), body.outcome)
    return StatusResponse(status="ok")


@gate_router.get("/windows/{kind}/{key}", response_model=RiskWindowOut)
def get_risk_window(
    kind: KeyKind,
    key: str,
    gate: AbuseGate = Depends(get_abuse_gate),
) -> RiskWindowOut:
    """Inspect the stored window for an identity or origin key."""
    window = gate.get_window(kind, key)
    if window is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "WINDOW_NOT_FOUND", "message": "No window for this key"},
        )
    return RiskWindowOut(
        kind=kind.value,
        key=key,
        window_start=window.window_start,
        window_end=window.window_end,
        failure_count=window.failure_count,
        total_count=window.total_count,
        recent_attempts=list(window.recent),
    )
