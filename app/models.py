"""Data models for the Student Risk Detection service."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model exposing camelCase field names on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode='json', by_alias=True)


class CategoryResult(CamelModel):
    """Per-category detail of an assessment."""
    score: float
    level: str
    weight: float
    factors: List[str] = []


class RiskAssessment(CamelModel):
    id: str
    student_id: str
    timestamp: datetime
    category_scores: Dict[str, float]
    categories: Dict[str, CategoryResult] = {}
    overall_risk: float
    overall_risk_level: str
    confidence: float
    factors_analyzed: int


class Alert(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    student_id: str
    type: str
    level: Literal['info', 'warning', 'critical', 'emergency']
    title: str
    message: str
    timestamp: datetime
    source_assessment_id: str
    risk_score: float
    factors: List[str] = []
    status: str = 'active'


class Note(CamelModel):
    timestamp: datetime
    content: str
    author: str = 'system'


class Intervention(CamelModel):
    id: str
    student_id: str
    type: str
    strategy: Optional[str] = None
    description: Optional[str] = None
    priority: str = 'medium'
    assigned_to: List[str] = []
    timeline: str = 'short-term'
    status: Literal['active', 'completed', 'closed', 'cancelled'] = 'active'
    progress: float = 0
    milestones: List[Any] = []
    resources: List[Any] = []
    notes: List[Note] = []
    created_at: datetime
    updated_at: datetime


class RiskHistoryEntry(CamelModel):
    assessment_id: str
    timestamp: datetime
    overall_risk: float
    overall_risk_level: str
    category_scores: Dict[str, float]


class RiskProfile(CamelModel):
    student_id: str
    created_at: datetime
    updated_at: datetime
    current_risk_level: Optional[str] = None
    intervention_count: int = 0
    active_interventions: int = 0
    last_intervention_at: Optional[datetime] = None


# Request bodies

class AnalyzeRequest(CamelModel):
    """Body of POST /analyze."""
    student_id: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    force_reanalysis: bool = False


class BatchCriteria(CamelModel):
    """Options of a batch run. Unknown keys are ignored."""
    force_reanalysis: bool = True


class BatchRequest(CamelModel):
    """Body of POST /analyze-batch.

    ``data`` maps a student id to that student's factor inputs. Values are
    left untyped here so one malformed entry fails only its own student.
    """
    student_ids: Optional[List[Any]] = None
    data: Dict[str, Any] = {}
    criteria: BatchCriteria = BatchCriteria()


class InterventionCreate(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    student_id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    strategy: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    assigned_to: Optional[List[str]] = None
    timeline: Optional[str] = None


class InterventionUpdate(CamelModel):
    progress: Optional[float] = Field(default=None, ge=0, le=100)
    notes: Optional[str] = None
    status: Optional[Literal['active', 'completed', 'closed', 'cancelled']] = None
    milestones: Optional[List[Any]] = None


class PredictRequest(CamelModel):
    criteria: Dict[str, Any] = {}
    time_horizon: str = '30d'
    confidence: float = Field(default=0.7, ge=0, le=1)
