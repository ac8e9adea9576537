"""Request/response models for the abuse gate endpoints."""

from pydantic import BaseModel, Field

from app.core.abuse_gate import AttemptOutcome, GateAction, GateReason


class GateEvaluateRequest(BaseModel):
    """Body for POST /api/auth/gate/evaluate.

    ``origin`` defaults to the calling client's IP when omitted.
    """

    identity: str | None = Field(None, max_length=320)
    origin: str | None = Field(None, max_length=256)
    captcha_token: str | None = Field(None, max_length=2048)
    user_agent: str | None = Field(None, max_length=1024)


class GateRecordRequest(BaseModel):
    """Body for POST /api/auth/gate/record."""

    identity: str | None = Field(None, max_length=320)
    origin: str | None = Field(None, max_length=256)
    user_agent: str | None = Field(None, max_length=1024)
    outcome: AttemptOutcome


class GateDecisionOut(BaseModel):
    action: GateAction
    reason: GateReason


class RiskWindowOut(BaseModel):
    kind: str
    key: str
    window_start: float
    window_end: float
    failure_count: int
    total_count: int
    recent_attempts: list[float]


class CaptchaSettings(BaseModel):
    captcha_site_key: str
