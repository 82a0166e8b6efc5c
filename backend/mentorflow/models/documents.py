"""MentorFlow Document Models

Document types, per-type generation parameters (tagged union keyed by
document_type) and the generated document artifact.
"""

from pydantic import BaseModel, Field, TypeAdapter
from typing import Annotated, Optional, Dict, Any, List, Literal, Union
from datetime import datetime, timezone
from enum import Enum


class DocumentType(str, Enum):
    """Documents the generation service can produce"""
    PITCH_DECK = "pitch_deck"
    BUSINESS_PLAN = "business_plan"
    MARKET_ANALYSIS = "market_analysis"
    CONSULTATION_SUMMARY = "consultation_summary"



class PitchDeckParameters(BaseModel):
    """Investor presentation inputs"""
    document_type: Literal["pitch_deck"] = "pitch_deck"
    company_name: str = Field(..., min_length=1)
    business_idea: str = Field(..., min_length=1)
    target_market: str = Field(..., min_length=1)
    funding_amount: str = Field(..., min_length=1)
    industry: str = Field(..., min_length=1)
    stage: Literal["idea", "prototype", "mvp", "growth"] = "mvp"

    model_config = {"extra": "forbid", "frozen": True}


class BusinessPlanParameters(BaseModel):
    """Business plan inputs"""
    document_type: Literal["business_plan"] = "business_plan"
    business_name: str = Field(..., min_length=1)
    business_model: str = Field(..., min_length=1)
    target_customers: str = Field(..., min_length=1)
    competitive_advantage: Optional[str] = None
    plan_type: Literal["executive_summary", "standard", "comprehensive"] = "standard"

    model_config = {"extra": "forbid", "frozen": True}


class MarketAnalysisParameters(BaseModel):
    """Market research inputs"""
    document_type: Literal["market_analysis"] = "market_analysis"
    industry: str = Field(..., min_length=1)
    geographic_focus: str = "Global"
    research_depth: Literal["overview", "detailed", "comprehensive"] = "detailed"

    model_config = {"extra": "forbid", "frozen": True}


class ConsultationSummaryParameters(BaseModel):
    """Post-session summary inputs"""
    document_type: Literal["consultation_summary"] = "consultation_summary"
    session_type: str = Field(..., min_length=1)
    key_topics: List[str] = Field(..., min_length=1)
    action_items: List[str] = Field(default_factory=list)
    next_steps: List[str] = Field(default_factory=list)

    model_config = {"extra": "forbid", "frozen": True}


DocumentParameters = Annotated[
    Union[
        PitchDeckParameters,
        BusinessPlanParameters,
        MarketAnalysisParameters,
        ConsultationSummaryParameters,
    ],
    Field(discriminator="document_type"),
]

_parameters_adapter = TypeAdapter(DocumentParameters)


def parse_document_parameters(document_type: str, parameters: Dict[str, Any]) -> DocumentParameters:
    """Validate a raw parameter bag against the variant for document_type.

    Raises pydantic.ValidationError for an unknown type or bad fields.
    """
    payload = dict(parameters or {})
    payload["document_type"] = document_type
    return _parameters_adapter.validate_python(payload)


class GeneratedDocument(BaseModel):
    """Document produced by the generation service. Immutable once created."""
    document_id: str
    scope_id: str  # Consultation the document belongs to
    document_type: DocumentType
    title: str = ""
    content: Any = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore", "frozen": True}
