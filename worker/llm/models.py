"""Structured output schemas for the generative backend.

Every generation is decoded and validated against one of these models
before anything downstream sees it. Field names are snake_case in Python
and camelCase on the wire.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Level = Literal["high", "medium", "low"]


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PageRecapOutput(CamelModel):
    """Per-page micro-audit returned by the backend."""

    summary: str = Field(min_length=1)
    top_issues: list[str] = Field(default_factory=list, max_length=6)
    recommendations: list[str] = Field(default_factory=list, max_length=6)
    wording_score: float = Field(ge=0, le=100)
    trust_score: float = Field(ge=0, le=100)
    cta_score: float = Field(ge=0, le=100)
    seo_copy_score: float = Field(ge=0, le=100)
    priority: Level
    language: Literal["fr", "en", "mixed", "unknown"] = "unknown"


class UserSummaryOutput(CamelModel):
    summary_text: str = Field(min_length=1)


class PriorityItem(CamelModel):
    title: str
    severity: Level = "medium"
    why_it_matters: str = ""
    recommended_fix: str = ""
    estimated_hours: float = Field(default=3, ge=0, le=200)


class UrlImprovement(CamelModel):
    url: str
    issue: str
    recommendation: str
    impact: Level = "medium"


class TodoItem(CamelModel):
    phase: str = ""
    objective: str = ""
    deliverable: str = ""
    estimated_hours: float = Field(default=3, ge=0, le=200)
    dependencies: list[str] = Field(default_factory=list)


class PlanItem(CamelModel):
    task: str
    goal: str = ""
    estimated_hours: float = Field(default=3, ge=0, le=400)
    risk: str = ""
    dependencies: list[str] = Field(default_factory=list)


class FastPlanItem(CamelModel):
    task: str
    why_it_matters: str = ""
    implementation_steps: list[str] = Field(default_factory=list)
    estimated_hours: float = Field(default=3, ge=0, le=200)
    expected_impact: str = ""
    priority: Level = "medium"


class BacklogItem(CamelModel):
    task: str
    priority: Level = "medium"
    details: str = ""
    estimated_hours: float = Field(default=4, ge=0, le=400)
    dependencies: list[str] = Field(default_factory=list)
    acceptance_criteria: list[str] = Field(default_factory=list)


class InvoiceItem(CamelModel):
    item: str = ""
    description: str = ""
    estimated_hours: float = Field(default=3, ge=0, le=200)


class DiagnosticChapters(CamelModel):
    conversion_and_clarity: str = ""
    speed_and_performance: str = ""
    seo_foundations: str = ""
    credibility_and_trust: str = ""
    tech_and_scalability: str = ""
    scorecard_and_business_opportunities: str = ""


class TechFingerprintOutput(CamelModel):
    primary_stack: str = ""
    confidence: float = 0
    evidence: list[str] = Field(default_factory=list)
    alternatives: list[str] = Field(default_factory=list)
    unknowns: list[str] = Field(default_factory=list)


class ExpertReportOutput(CamelModel):
    """Full expert report; missing sections are filled by the quality gate."""

    executive_summary: str = ""
    report_explanation: str = ""
    strengths: list[str] = Field(default_factory=list)
    diagnostic_chapters: DiagnosticChapters | None = None
    tech_fingerprint: TechFingerprintOutput | None = None
    priorities: list[PriorityItem] = Field(default_factory=list)
    url_level_improvements: list[UrlImprovement] = Field(default_factory=list)
    implementation_todo: list[TodoItem] = Field(default_factory=list)
    what_to_fix_this_week: list[PlanItem] = Field(default_factory=list)
    what_to_fix_this_month: list[PlanItem] = Field(default_factory=list)
    client_message_template: str = ""
    client_long_email: str = ""
    fast_implementation_plan: list[FastPlanItem] = Field(default_factory=list)
    implementation_backlog: list[BacklogItem] = Field(default_factory=list)
    invoice_scope: list[InvoiceItem] = Field(default_factory=list)

    def to_report(self) -> dict:
        """Dump as a camelCase report document for the quality gate."""
        return self.model_dump(by_alias=True, exclude_none=True)
