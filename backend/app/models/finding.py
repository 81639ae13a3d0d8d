"""Finding models - the unit of analysis output."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Severity(str, Enum):
    """Finding severity levels."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Optional text fields carried from the model response to the findings table
EXTENDED_TEXT_FIELDS = (
    "mitre_attack",
    "cis_control",
    "impact_business",
    "remediation_commands",
    "prerequisites",
    "operational_impact",
    "microsoft_docs",
    "current_vs_recommended",
    "timeline",
)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return " | ".join(str(v) for v in value if v is not None)
    return str(value)


def _as_count(value: Any) -> int:
    try:
        return max(0, int(float(value)))
    except (TypeError, ValueError):
        return 0


class FindingEvidence(BaseModel):
    """Concrete evidence backing a finding."""

    affected_objects: list[str] = Field(default_factory=list)
    count: int = Field(default=0, ge=0)
    details: str = ""

    # Older prompts asked for standard/current_state/verification_command
    model_config = ConfigDict(extra="allow")

    @field_validator("affected_objects", mode="before")
    @classmethod
    def _coerce_objects(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        if isinstance(v, (list, tuple, set)):
            return [str(item) for item in v if item is not None]
        return [str(v)]

    @field_validator("count", mode="before")
    @classmethod
    def _coerce_count(cls, v: Any) -> int:
        return _as_count(v)

    @field_validator("details", mode="before")
    @classmethod
    def _coerce_details(cls, v: Any) -> str:
        return _as_text(v)


class Finding(BaseModel):
    """One reported security issue."""

    title: str = "Security Issue"
    severity: Severity = Severity.MEDIUM
    description: str = "No description"
    recommendation: str = "Review finding"
    evidence: FindingEvidence = Field(default_factory=FindingEvidence)
    type_id: Optional[str] = None
    mitre_attack: str = ""
    cis_control: str = ""
    impact_business: str = ""
    remediation_commands: str = ""
    prerequisites: str = ""
    operational_impact: str = ""
    microsoft_docs: str = ""
    current_vs_recommended: str = ""
    timeline: str = ""
    affected_count: int = 0

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, v: Any) -> Severity:
        try:
            return Severity(str(v).strip().lower())
        except ValueError:
            return Severity.MEDIUM

    @field_validator("title", "description", "recommendation", mode="before")
    @classmethod
    def _required_text(cls, v: Any, info) -> str:
        text = _as_text(v).strip()
        return text or cls.model_fields[info.field_name].default

    @field_validator(*EXTENDED_TEXT_FIELDS, mode="before")
    @classmethod
    def _optional_text(cls, v: Any) -> str:
        return _as_text(v)

    @field_validator("type_id", mode="before")
    @classmethod
    def _coerce_type_id(cls, v: Any) -> Optional[str]:
        text = _as_text(v).strip()
        return text or None

    @field_validator("evidence", mode="before")
    @classmethod
    def _coerce_evidence(cls, v: Any) -> Any:
        return v if isinstance(v, (dict, FindingEvidence)) else {}

    @field_validator("affected_count", mode="before")
    @classmethod
    def _coerce_affected_count(cls, v: Any) -> int:
        return _as_count(v)

    @classmethod
    def from_raw(cls, raw: dict) -> "Finding":
        """Build a finding from a provider response item, tolerating gaps."""
        finding = cls.model_validate({k: v for k, v in raw.items() if v is not None})
        if not finding.affected_count:
            finding.affected_count = finding.evidence.count or len(
                finding.evidence.affected_objects
            )
        return finding
