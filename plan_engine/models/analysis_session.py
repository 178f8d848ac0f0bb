"""
plan_engine/models/analysis_session.py

Remote analysis-job record as written by the analysis backend.

Field names follow the remote record (camelCase) and are also accepted in
snake_case. Timestamps are epoch milliseconds, as the job runner writes them.
"""

from enum import Enum
from typing import Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class AnalysisStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AnalysisProgress(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    percentage: float = Field(default=0.0, ge=0.0, le=100.0)
    current_phase: Optional[str] = Field(default=None, alias="currentPhase")
    processed_batches: Optional[int] = Field(default=None, alias="processedBatches")
    total_batches: Optional[int] = Field(default=None, alias="totalBatches")
    estimated_time_remaining: Optional[float] = Field(default=None, alias="estimatedTimeRemaining")


class AnalysisSessionState(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    status: AnalysisStatus
    progress: Optional[AnalysisProgress] = None
    started_at: Optional[int] = Field(default=None, alias="startedAt")
    completed_at: Optional[int] = Field(default=None, alias="completedAt")
    error: Optional[str] = None
    job_id: Optional[str] = Field(default=None, alias="jobId")


class IntermediateTopic(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    name: str
    summary: str = ""
    count: int = 0
    is_temporary: bool = Field(default=True, alias="isTemporary")


class IntermediateInsight(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    title: str
    description: str = ""
    is_temporary: bool = Field(default=True, alias="isTemporary")


class IntermediateResults(BaseModel):
    """Partial topics/insights published while a job is still running."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    topics: Dict[str, IntermediateTopic] = Field(default_factory=dict)
    insights: Dict[str, IntermediateInsight] = Field(default_factory=dict)


class DetailedProgress(BaseModel):
    model_config = ConfigDict(frozen=True)

    percentage: float
    phase: str
    topics_count: int
    insights_count: int

    @property
    def has_intermediate_results(self) -> bool:
        return self.topics_count > 0 or self.insights_count > 0
