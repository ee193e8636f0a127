"""Models for CLI payloads, the approvals queue and API request bodies."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CacheKey(str, Enum):
    RUNTIME_STATUS = "runtime-status"
    COST_SUMMARY_TEXT = "cost-summary-text"
    COST_SUMMARY_JSON = "cost-summary-json"
    CRON_LIST = "cron-list"
    SESSIONS = "sessions"


class ExternalModel(BaseModel):
    """Base for payloads produced by external tools (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        protected_namespaces=(),
    )


# --- openclaw status --json ---


class HeartbeatAgent(ExternalModel):
    agent_id: str
    enabled: bool = False
    every: str = ""
    every_ms: int = 0
    model: Optional[str] = None
    prompt: Optional[str] = None


class HeartbeatSummary(ExternalModel):
    default_agent_id: str = "main"
    agents: list[HeartbeatAgent] = Field(default_factory=list)


class SessionRecord(ExternalModel):
    agent_id: str = "unknown"
    key: str = ""
    kind: str = ""
    model: Optional[str] = None
    percent_used: Optional[float] = None
    total_tokens: Optional[int] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    remaining_tokens: Optional[int] = None
    context_tokens: Optional[int] = None
    updated_at: Optional[int] = None
    age: Optional[int] = None


class AgentSessions(ExternalModel):
    agent_id: str = "unknown"
    count: int = 0
    recent: list[SessionRecord] = Field(default_factory=list)


class SessionsSummary(ExternalModel):
    count: int = 0
    recent: list[SessionRecord] = Field(default_factory=list)
    by_agent: list[AgentSessions] = Field(default_factory=list)


class AgentConfig(ExternalModel):
    id: str
    name: Optional[str] = None
    sessions_count: Optional[int] = None
    last_updated_at: Optional[Any] = None
    last_active_age_ms: Optional[int] = None
    workspace_dir: Optional[str] = None


class AgentsSummary(ExternalModel):
    agents: list[AgentConfig] = Field(default_factory=list)


class OpenClawStatus(ExternalModel):
    heartbeat: HeartbeatSummary = Field(default_factory=HeartbeatSummary)
    sessions: SessionsSummary = Field(default_factory=SessionsSummary)
    agents: AgentsSummary = Field(default_factory=AgentsSummary)
    channel_summary: list[Any] = Field(default_factory=list)


# --- openclaw sessions list --json ---


class SessionListEntry(ExternalModel):
    key: str
    kind: Optional[str] = None
    session_id: Optional[str] = None
    model: Optional[str] = None
    updated_at: Optional[int] = None
    age_ms: Optional[int] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    context_tokens: Optional[int] = None
    aborted_last_run: bool = False


class SessionList(ExternalModel):
    sessions: list[SessionListEntry] = Field(default_factory=list)


# --- codexbar cost ---


class ProviderTextSummary(BaseModel):
    provider: str
    today: float = 0.0
    today_tokens: str = ""
    month: float = 0.0
    month_tokens: str = ""


class ModelBreakdown(ExternalModel):
    model_name: str = "unknown"
    cost: float = 0.0

    @field_validator("cost", mode="before")
    @classmethod
    def non_numeric_cost_is_zero(cls, value):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return 0.0
        return value


class CostDay(ExternalModel):
    date: str
    total_cost: Optional[float] = None
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    model_breakdowns: list[ModelBreakdown] = Field(default_factory=list)

    def cost(self) -> float:
        if self.total_cost is not None:
            return self.total_cost
        return sum(breakdown.cost for breakdown in self.model_breakdowns)


class CostProvider(ExternalModel):
    provider: str = "unknown"
    daily: list[CostDay] = Field(default_factory=list)


# --- openclaw cron list --all --json ---


class CronJobState(ExternalModel):
    next_run_at_ms: Optional[int] = None
    last_run_at_ms: Optional[int] = None
    last_status: Optional[str] = None
    last_error: Optional[str] = None


class CronJob(ExternalModel):
    id: str
    name: Optional[str] = None
    enabled: bool = False
    schedule: Any = None
    payload: Any = None
    session_target: Any = None
    agent_id: Optional[str] = None
    state: CronJobState = Field(default_factory=CronJobState)


class CronList(ExternalModel):
    jobs: list[CronJob] = Field(default_factory=list)


# --- approvals queue ---

ApprovalType = Literal["task", "action", "evolution", "deployment"]
ApprovalStatus = Literal["pending", "approved", "rejected"]


class ApprovalRequest(ExternalModel):
    model_config = ConfigDict(extra="allow")

    id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    agent: str
    type: ApprovalType
    title: str
    description: str
    details: dict[str, Any] = Field(default_factory=dict)
    status: ApprovalStatus = "pending"
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    notes: Optional[str] = None


class ApprovalCreateRequest(BaseModel):
    agent: str = Field(min_length=1)
    type: ApprovalType
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    details: dict[str, Any] = Field(default_factory=dict)


class ApprovalUpdateFields(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    notes: Optional[str] = None


class ApprovalActionRequest(BaseModel):
    id: str = Field(min_length=1)
    action: Literal["approve", "reject", "update"]
    notes: Optional[str] = None
    updates: ApprovalUpdateFields = Field(default_factory=ApprovalUpdateFields)


class ApprovalDeleteRequest(BaseModel):
    id: str = Field(min_length=1)


# --- API request bodies ---


class StatusActionRequest(BaseModel):
    action: str
    agent_id: Optional[str] = Field(default=None, alias="agentId")


class HeartbeatActionRequest(BaseModel):
    action: str = Field(min_length=1)
    agent_id: str = Field(min_length=1, pattern=r"^[A-Za-z0-9_.-]+$", alias="agentId")


class ScheduleUpdate(BaseModel):
    job_id: str = Field(default="", alias="jobId")
    cron_expr: str = Field(default="", alias="cronExpr")


class CronActionRequest(BaseModel):
    action: str
    job_id: Optional[str] = Field(default=None, alias="jobId")
    cron_expr: Optional[str] = Field(default=None, alias="cronExpr")
    updates: list[ScheduleUpdate] = Field(default_factory=list)


class GatewayInvokeRequest(BaseModel):
    method: str = Field(min_length=1)
    params: Optional[Any] = None
