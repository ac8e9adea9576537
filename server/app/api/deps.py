from fastapi import Depends, Request

from app.core.abuse_gate import AbuseGate
from app.services.auth_abuse import AuthAbuseService


def get_abuse_gate(request: Request) -> AbuseGate:
    """The process-wide gate created at startup (see app.main)."""
    return request.app.state.abuse_gate


def get_auth_abuse_service(gate: AbuseGate = Depends(get_abuse_gate)) -> AuthAbuseService:
    return AuthAbuseService(gate)
