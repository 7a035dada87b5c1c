"""
Read Models

What actions and queries return: the aggregate as stored, plus what the
viewer may do next. Callers never need a second round-trip after a
mutation.
"""

from typing import Generic, TypeVar

from pydantic import BaseModel, Field

from .actions import Action
from .claim import Claim
from .compliance import Compliance, ComplianceStatus, Urgency


T = TypeVar("T")


class ComplianceView(BaseModel):
    compliance: Compliance
    display_status: ComplianceStatus
    urgency: Urgency
    available_actions: list[Action] = Field(default_factory=list)


class SettlementSummary(BaseModel):
    """How far the compliances of a claim have got."""
    total: int = 0
    settled: int = 0
    outstanding: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)


class ClaimView(BaseModel):
    claim: Claim
    available_actions: list[Action] = Field(default_factory=list)
    can_resolve: bool = False
    settlement: SettlementSummary = Field(default_factory=SettlementSummary)
    compliances: list[ComplianceView] = Field(default_factory=list)


class Page(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    limit: int
    pages: int


class ComplianceStats(BaseModel):
    """Per-user compliance counters."""
    user_id: str
    total: int = 0
    pending: int = 0
    submitted: int = 0
    approved: int = 0
    rejected: int = 0
    escalated: int = 0
    overdue: int = 0
    suspensions: int = 0
    bans: int = 0


class SweepReport(BaseModel):
    """Outcome of one overdue sweep."""
    evaluated: int = 0
    advanced: int = 0
    suspended: int = 0
    banned: int = 0
    conflicts: int = 0
