"""Domain models shared by the store, the match engine and the request lifecycle."""
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator


def compute_response_rate(success_count: int, total_requests: int) -> int:
    """Percentage of received requests that ended in a completed intro.

    Rounds half-up and returns 0 when nothing has been received yet.
    """
    if total_requests <= 0:
        return 0
    return (success_count * 200 + total_requests) // (2 * total_requests)


def first_name(full_name: str | None) -> str:
    if not full_name:
        return ""
    parts = full_name.split()
    return parts[0] if parts else ""


class User(BaseModel):
    id: str
    email: str
    name: str
    affiliation: str | None = None
    linkedin_url: str | None = None
    created_at: datetime

    @property
    def first_name(self) -> str:
        return first_name(self.name)


class EnrichedData(BaseModel):
    """Structured fields extracted from a contact's raw text."""
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    title: str | None = None
    industry: str | None = None
    seniority: str | None = None
    location: str | None = None
    company_size: str | None = None
    funding_stage: str | None = None
    years_experience: int | None = None
    skills: list[str] | None = None
    education: str | None = None
    university: str | None = None
    degree: str | None = None
    major: str | None = None
    graduation_year: int | None = None
    recent_role_change: bool | None = None
    industry_fit: str | None = None
    linkedin_summary: str | None = None
    confidence: int = Field(default=0, ge=0, le=100)


# Fields an enrichment pass may write onto a contact, besides `confidence` and `enriched`.
ENRICHMENT_FIELDS = tuple(f for f in EnrichedData.model_fields if f != "confidence")


class Contact(BaseModel):
    id: str
    user_id: str
    raw_text: str
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    linkedin_url: str | None = None
    company: str | None = None
    title: str | None = None
    industry: str | None = None
    seniority: str | None = None
    location: str | None = None
    company_size: str | None = None
    funding_stage: str | None = None
    years_experience: int | None = None
    skills: list[str] | None = None
    education: str | None = None
    university: str | None = None
    degree: str | None = None
    major: str | None = None
    graduation_year: int | None = None
    recent_role_change: bool | None = None
    industry_fit: str | None = None
    linkedin_summary: str | None = None
    enriched: bool = False
    confidence: int | None = None
    created_at: datetime

    @model_validator(mode="after")
    def _enriched_has_confidence(self):
        if self.enriched and self.confidence is None:
            raise ValueError("An enriched contact needs a confidence score")
        return self


class IntroStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    COMPLETED = "completed"


class IntroRequest(BaseModel):
    id: str
    requester_id: str
    connector_user_id: str
    contact_id: str | None = None
    target_company: str
    target_company_normalized: str
    reason: str
    essay: str | None = None
    status: IntroStatus = IntroStatus.PENDING
    created_at: datetime
    updated_at: datetime


class ConnectorStats(BaseModel):
    user_id: str
    success_count: int = 0
    total_requests: int = 0
    response_rate: int = 0


class RateLimit(BaseModel):
    user_id: str
    week_start: datetime
    indirect_requests_count: int = 0


class SearchIntent(BaseModel):
    company: str | None = None
    industry: str | None = None
    role: str | None = None
    seniority: str | None = None
    location: str | None = None

    def is_empty(self) -> bool:
        return not any(self.model_dump().values())


class IntroMessage(BaseModel):
    subject: str
    body: str


class ConnectorSummary(BaseModel):
    success_count: int = 0
    response_rate: int = 0


class DirectMatch(BaseModel):
    contact: Contact
    match_type: str = "direct"


class IndirectMatch(BaseModel):
    """A path to a company through another user's network.

    Only the connector's first name is exposed; the full identity is revealed
    once they accept a request.
    """
    contact_id: str
    company: str
    company_normalized: str
    title: str | None = None
    industry: str | None = None
    seniority: str | None = None
    location: str | None = None
    confidence: int = 0
    connector_id: str
    connector_name: str
    connector_stats: ConnectorSummary
    match_type: str = "indirect"


class SearchResult(BaseModel):
    direct: list[DirectMatch] = Field(default_factory=list)
    indirect: list[IndirectMatch] = Field(default_factory=list)


class CreatedIntro(BaseModel):
    request: IntroRequest
    suggested_message: IntroMessage | None = None


class RespondedIntro(BaseModel):
    request: IntroRequest
    message: IntroMessage | None = None


class AdminStats(BaseModel):
    total_users: int
    total_contacts: int
    enriched_contacts: int
    total_requests: int
    active_intros: int
    completed_intros: int
    declined_intros: int
    success_rate: int
