"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
"""

from datetime import date, datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


# ============================================================================
# Convert Models
# ============================================================================

class ConvertCreateRequest(BaseModel):
    """Request to register a new convert."""
    soul_winner_id: UUID = Field(..., description="Soul winner registering (and owning) the convert")
    parish_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    whatsapp: Optional[str] = None
    house_address: Optional[str] = None
    date_born_again: Optional[date] = None
    age_group: Optional[str] = Field(None, description="Children, Teenagers, YAYA, Adults or Elders")
    gender: Optional[str] = Field(None, description="Male or Female")
    marital_status: Optional[str] = Field(None, description="Single, Married, Divorced or Widowed")
    career: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "soul_winner_id": "123e4567-e89b-12d3-a456-426614174000",
                "parish_id": "parish-lagos-12",
                "name": "Ada Obi",
                "phone": "+2348030000000",
                "age_group": "YAYA",
                "gender": "Female"
            }
        }


class ActorFields(BaseModel):
    """Identifies who is performing a managed transition."""
    actor_id: UUID
    actor_role: str = Field(..., description="soul_winner, parish_admin, area_admin, zonal_admin or super_admin")


class ConvertUpdateRequest(ActorFields):
    """Demographic edits. Omitted fields are left unchanged; null clears an optional field."""
    name: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    house_address: Optional[str] = None
    date_born_again: Optional[date] = None
    age_group: Optional[str] = None
    gender: Optional[str] = None
    marital_status: Optional[str] = None
    career: Optional[str] = None


class ManualStatusRequest(ActorFields):
    """Actor override of a convert's status."""
    status: str = Field(..., description="Unreachable or Completed")

    class Config:
        json_schema_extra = {
            "example": {
                "actor_id": "123e4567-e89b-12d3-a456-426614174000",
                "actor_role": "soul_winner",
                "status": "Unreachable"
            }
        }


class ReopenRequest(ActorFields):
    """Clear a manual status."""


class MilestoneUpdateRequest(BaseModel):
    """Milestone changes. Omitted tracks are left unchanged."""
    believerClass: Optional[str] = None
    waterBaptism: Optional[str] = None
    workersTraining: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "believerClass": "Completed",
                "waterBaptism": "InProgress"
            }
        }


class FollowUpVisitResponse(BaseModel):
    visit_number: int
    title: str
    visit_date: datetime
    is_completed: bool
    completed_at: Optional[datetime] = None


class ConvertResponse(BaseModel):
    """A convert with its computed stage."""
    convert_id: UUID
    soul_winner_id: UUID
    parish_id: str
    name: str
    phone: str
    whatsapp: Optional[str] = None
    house_address: Optional[str] = None
    date_born_again: Optional[date] = None
    age_group: Optional[str] = None
    gender: Optional[str] = None
    marital_status: Optional[str] = None
    career: Optional[str] = None
    status: str
    stage: str
    follow_up_visits: List[FollowUpVisitResponse]
    spiritual_growth: Dict[str, str]
    created_at: datetime
    updated_at: Optional[datetime] = None


class StageResponse(BaseModel):
    convert_id: UUID
    stage: str


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    status_code: int

    class Config:
        json_schema_extra = {
            "example": {
                "error": "Not found",
                "detail": "Visit 9 not found",
                "status_code": 404
            }
        }
