"""DEO (Discovery Engine Optimization) data contracts shared with the dashboard.

Plain shapes only: the scoring worker and the issues builder live elsewhere.
Fields are camelCase on the wire and snake_case in Python.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

from app.core.time import isoformat_z

DEO_SCORE_QUEUE = "deo_score_queue"

# Conventional values for DeoScoreJobPayload.reason
DEO_SCORE_REASON_MANUAL = "manual"
DEO_SCORE_REASON_SCHEDULED = "scheduled"
DEO_SCORE_REASON_AFTER_IMPORT = "after_import"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeoScoreJobPayload(_CamelModel):
    """Input to the DEO score job."""

    project_id: str = Field(..., min_length=1)
    triggered_by_user_id: str | None = None
    reason: str | None = None


class DeoScoreJobResult(_CamelModel):
    """Output of the DEO score job: the snapshot it produced."""

    project_id: str
    snapshot_id: str


class DeoIssueSeverity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class DeoIssue(_CamelModel):
    id: str
    title: str
    description: str
    severity: DeoIssueSeverity
    count: int = Field(..., ge=0)
    affected_pages: list[str] | None = None
    affected_products: list[str] | None = None


class DeoIssuesResponse(_CamelModel):
    """Issues read model served to the project dashboard."""

    project_id: str
    generated_at: datetime
    issues: list[DeoIssue] = Field(default_factory=list)

    @field_serializer("generated_at")
    def _serialize_generated_at(self, value: datetime) -> str:
        return isoformat_z(value)
