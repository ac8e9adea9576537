from app.schemas.common import HealthResponse, StatusResponse
from app.schemas.deo import (
    DeoIssue,
    DeoIssueSeverity,
    DeoIssuesResponse,
    DeoScoreJobPayload,
    DeoScoreJobResult,
)
from app.schemas.gate import GateDecisionOut, GateEvaluateRequest, GateRecordRequest

__all__ = [
    "HealthResponse",
    "StatusResponse",
    "DeoIssue",
    "DeoIssueSeverity",
    "DeoIssuesResponse",
    "DeoScoreJobPayload",
    "DeoScoreJobResult",
    "GateDecisionOut",
    "GateEvaluateRequest",
    "GateRecordRequest",
]
