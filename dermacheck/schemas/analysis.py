"""Pydantic schemas for scan results and analysis history."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# The service does not report a confidence for fresh scans.
DEFAULT_SCAN_CONFIDENCE = 0.95


class Diagnosis(str, Enum):
    MONKEYPOX = "Monkeypox"
    CHICKENPOX = "Chickenpox"
    MEASLES = "Measles"
    NORMAL = "Normal"

    @classmethod
    def coerce(cls, value: Any) -> "Diagnosis":
        """Map any server value onto the closed enum, unknown values become NORMAL."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.NORMAL


class MedicalAdvice(BaseModel):
    """Narrative payload shared by ``/scan`` reports and history ``medical_advice``."""

    assessment: str = ""
    key_features: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)

    @field_validator("assessment", mode="before")
    @classmethod
    def none_assessment(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("key_features", "recommendations", mode="before")
    @classmethod
    def none_list(cls, v: Any) -> Any:
        return [] if v is None else v


class AnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    diagnosis: Diagnosis
    assessment: str = ""
    key_features: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    confidence_score: Optional[float] = None

    @field_validator("diagnosis", mode="before")
    @classmethod
    def closed_diagnosis(cls, v: Any) -> Diagnosis:
        return Diagnosis.coerce(v)

    @classmethod
    def from_advice(
        cls, diagnosis: Any, advice: MedicalAdvice, confidence: Optional[float] = None
    ) -> "AnalysisResult":
        return cls(
            diagnosis=diagnosis,
            assessment=advice.assessment,
            key_features=list(advice.key_features),
            recommendations=list(advice.recommendations),
            confidence_score=confidence,
        )

    @property
    def is_normal(self) -> bool:
        return self.diagnosis is Diagnosis.NORMAL


class Submission(BaseModel):
    """Outcome of one successful ``/scan`` call."""

    model_config = ConfigDict(frozen=True)

    analysis: AnalysisResult
    image_url: Optional[str] = None


class HistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    created_at: datetime
    result: AnalysisResult
    image_url: Optional[str] = None


class HistoryStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    non_normal: int = 0
    monkeypox: int = 0


# Wire payloads ------------------------------------------------------------------
class ScanResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str
    diagnosis: Any
    image_url: Optional[str] = None
    report: MedicalAdvice

    def to_submission(self) -> Submission:
        analysis = AnalysisResult.from_advice(self.diagnosis, self.report, DEFAULT_SCAN_CONFIDENCE)
        return Submission(analysis=analysis, image_url=self.image_url)


class HistoryItem(BaseModel):
    """One row of ``GET /history/{user_id}``; ``medical_advice`` is decoded separately."""

    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: Optional[str] = None
    image_url: Optional[str] = None
    diagnosis: Any = None
    confidence: Optional[float] = None
    medical_advice: Any = None
    created_at: datetime

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def stringify_ids(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v
