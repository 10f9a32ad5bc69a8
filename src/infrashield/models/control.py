"""Security control and gap analysis data models."""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, model_validator


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
    Severity.INFO: 0,
}

# Controls at these severities are flagged as recommended when a catalog loads.
RECOMMENDED_SEVERITIES = frozenset({Severity.CRITICAL, Severity.HIGH})


class SecurityControl(BaseModel):
    """A single reference control from a compliance standard."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    category: str = ""
    severity: Severity
    reference: str = ""
    implementation_hint: Optional[str] = None
    recommended: bool = False

    @model_validator(mode="before")
    @classmethod
    def _derive_recommended(cls, data):
        if isinstance(data, dict):
            data = dict(data)
            data["recommended"] = Severity(data.get("severity")) in RECOMMENDED_SEVERITIES
        return data


class StandardCatalog(BaseModel):
    """A named, versioned set of controls published by one standard body."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    version: str
    last_updated: date
    controls: tuple[SecurityControl, ...] = ()

    def ref(self) -> StandardRef:
        return StandardRef(id=self.id, name=self.name, version=self.version)


class StandardRef(BaseModel):
    id: str
    name: str
    version: str


class EnabledControl(BaseModel):
    """A control attached to a toolkit in the control store."""

    id: int
    toolkit_id: int
    control_id: str
    name: str
    description: str = ""
    category: str = ""
    severity: Severity
    reference: str = ""
    code: str = ""
    enabled: bool = True
    added_at: datetime


class Suggestion(BaseModel):
    """A reference control missing from a toolkit."""

    id: str
    name: str
    description: str
    category: str
    severity: Severity
    reference: str
    implementation_hint: Optional[str] = None
    standard_id: str
    recommended: bool

    @classmethod
    def from_control(cls, control: SecurityControl, standard_id: str) -> Suggestion:
        return cls(
            id=control.id,
            name=control.name,
            description=control.description,
            category=control.category,
            severity=control.severity,
            reference=control.reference,
            implementation_hint=control.implementation_hint,
            standard_id=standard_id,
            recommended=control.recommended,
        )

    def to_control(self) -> SecurityControl:
        return SecurityControl(
            id=self.id,
            name=self.name,
            description=self.description,
            category=self.category,
            severity=self.severity,
            reference=self.reference,
            implementation_hint=self.implementation_hint,
        )


class GapAnalysis(BaseModel):
    """Result of comparing a toolkit against its reference standards."""

    platform: str
    standards_used: list[StandardRef] = []
    total_reference_controls: int = 0
    present_controls: int = 0
    coverage_percent: float = 0.0
    suggestions: list[Suggestion] = []

    @property
    def recommended(self) -> list[Suggestion]:
        return [s for s in self.suggestions if s.recommended]

    def by_category(self) -> dict[str, list[Suggestion]]:
        """Group suggestions by category, keeping declaration order."""
        groups: dict[str, list[Suggestion]] = defaultdict(list)
        for suggestion in self.suggestions:
            groups[suggestion.category].append(suggestion)
        return dict(groups)
