"""Pydantic schemas for the design versioning and review API."""

from datetime import datetime
from typing import Optional, Any, Dict, List
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ----- Design sub-documents -----

class DesignStep(BaseModel):
    model_config = ConfigDict(extra="allow")
    step_number: Optional[int] = None
    instruction: str
    duration_minutes: Optional[int] = None
    safety_notes: Optional[str] = None


class DesignMaterial(BaseModel):
    model_config = ConfigDict(extra="allow")
    material_id: Optional[str] = None
    quantity: str = ""
    alternatives_allowed: bool = False
    criticality: str = "required"  # required, recommended, optional
    usage_notes: Optional[str] = None
    estimated_cost_usd: Optional[float] = None
    description: Optional[str] = None
    pending: bool = False


class ResearchQuestion(BaseModel):
    model_config = ConfigDict(extra="allow")
    id: Optional[str] = None
    question: str
    expected_data_type: str = "numeric"  # numeric, categorical, image, text, other
    measurement_unit: Optional[str] = None
    success_criteria: Optional[str] = None


class Variable(BaseModel):
    model_config = ConfigDict(extra="allow")
    name: str
    type: str = "continuous"  # continuous, discrete, categorical
    values_or_range: str = ""
    units: Optional[str] = None


class DesignReference(BaseModel):
    model_config = ConfigDict(extra="allow")
    citation: str
    url: Optional[str] = None
    doi: Optional[str] = None
    relevance_note: Optional[str] = None


class DesignFile(BaseModel):
    name: str
    url: str
    size: int = 0


class ForkMetadata(BaseModel):
    parent_design_id: UUID
    fork_generation: int
    fork_type: str
    fork_rationale: str


# ----- Designs -----

class DesignFields(BaseModel):
    title: Optional[str] = None
    summary: Optional[str] = None
    hypothesis: Optional[str] = None
    discipline_tags: Optional[List[str]] = None
    difficulty_level: Optional[str] = None
    materials: Optional[List[DesignMaterial]] = None
    steps: Optional[List[DesignStep]] = None
    research_questions: Optional[List[ResearchQuestion]] = None
    independent_variables: Optional[List[Variable]] = None
    dependent_variables: Optional[List[Variable]] = None
    controlled_variables: Optional[List[Variable]] = None
    safety_considerations: Optional[str] = None
    ethical_considerations: Optional[str] = None
    analysis_plan: Optional[str] = None
    disclaimers: Optional[str] = None
    collaboration_notes: Optional[str] = None
    seeking_collaborators: Optional[bool] = None
    statistical_methods: Optional[List[str]] = None
    references: Optional[List[DesignReference]] = None
    cover_image_url: Optional[str] = None
    design_files: Optional[List[DesignFile]] = None
    reference_design_ids: Optional[List[str]] = None


class DesignCreate(DesignFields):
    coauthor_ids: List[str] = Field(default_factory=list)


class DesignUpdate(DesignFields):
    pending_changelog: Optional[str] = None


class DesignOut(BaseModel):
    id: UUID
    owner_id: str
    author_ids: List[str]
    title: str
    summary: str
    hypothesis: Optional[str] = None
    discipline_tags: List[str] = Field(default_factory=list)
    difficulty_level: Optional[str] = None
    materials: List[Dict[str, Any]] = Field(default_factory=list)
    steps: List[Dict[str, Any]] = Field(default_factory=list)
    research_questions: List[Dict[str, Any]] = Field(default_factory=list)
    independent_variables: List[Dict[str, Any]] = Field(default_factory=list)
    dependent_variables: List[Dict[str, Any]] = Field(default_factory=list)
    controlled_variables: List[Dict[str, Any]] = Field(default_factory=list)
    safety_considerations: Optional[str] = None
    ethical_considerations: Optional[str] = None
    analysis_plan: Optional[str] = None
    disclaimers: Optional[str] = None
    collaboration_notes: Optional[str] = None
    seeking_collaborators: Optional[bool] = False
    statistical_methods: List[str] = Field(default_factory=list)
    references: List[Dict[str, Any]] = Field(default_factory=list)
    cover_image_url: Optional[str] = None
    design_files: List[Dict[str, Any]] = Field(default_factory=list)
    reference_design_ids: List[str] = Field(default_factory=list)
    custom_fields: Dict[str, Any] = Field(default_factory=dict)
    status: str
    version: int
    published_version: int
    has_draft_changes: bool
    pending_changelog: Optional[str] = None
    execution_count: int
    derived_design_count: int
    review_count: int
    fork_metadata: Optional[ForkMetadata] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class PublishRequest(BaseModel):
    changelog: Optional[str] = None
    expected_published_version: Optional[int] = None


class ForkRequest(BaseModel):
    fork_type: str
    fork_rationale: str = ""


class CoauthorAdd(BaseModel):
    user_id: str


class DesignVersionSummary(BaseModel):
    version_number: int
    published_at: datetime
    published_by: str
    changelog: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class DesignVersionOut(DesignVersionSummary):
    data: Dict[str, Any]


class DesignExecutionOut(BaseModel):
    id: UUID
    design_id: UUID
    design_version: int
    experimenter_id: str
    status: str
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


# ----- Reviews -----

class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class SuggestionCreate(CamelModel):
    field_ref: Optional[str] = None
    new_field_name: Optional[str] = None
    proposed_text: Optional[str] = None
    comment: Optional[str] = None
    suggestion_type: Optional[str] = None
    remove_material_ids: List[str] = Field(default_factory=list)


class ReviewCreate(CamelModel):
    general_comment: Optional[str] = None
    readiness_signal: Optional[str] = None
    endorsement: bool = False
    suggestions: List[SuggestionCreate] = Field(default_factory=list)


class FieldSuggestionOut(CamelModel):
    id: UUID
    review_id: UUID
    design_id: UUID
    version_number: int
    field_ref: Optional[str] = None
    new_field_name: Optional[str] = None
    proposed_text: Optional[str] = None
    comment: Optional[str] = None
    suggestion_type: Optional[str] = None
    status: str
    owner_reply: Optional[str] = None
    remove_material_ids: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ReviewOut(CamelModel):
    id: UUID
    design_id: UUID
    version_number: int
    reviewer_id: str
    general_comment: Optional[str] = None
    readiness_signal: Optional[str] = None
    endorsement: bool
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    suggestions: List[FieldSuggestionOut] = Field(default_factory=list)


class AcceptSuggestionOut(CamelModel):
    suggestion: FieldSuggestionOut
    draft_created: bool


class SuggestionReply(CamelModel):
    reply: str = ""


class EndorsementCreate(CamelModel):
    comment: str = ""


class EndorsementOut(CamelModel):
    review_id: UUID
    reviewer_id: str
    comment: Optional[str] = None
    version_number: int
    created_at: Optional[datetime] = None


class ContributingReviewerOut(CamelModel):
    user_id: str
    version_number: int
    accepted_suggestion_ids: List[str] = Field(default_factory=list)
    endorsed_and_executed: bool = False


class ReviewSummaryOut(CamelModel):
    review_count: int
    endorsement_count: int
    contributing_reviewers: List[ContributingReviewerOut] = Field(default_factory=list)
    version_number: int
    is_locked: bool
    reviewable: bool
    user_has_reviewed: Optional[bool] = None


# ----- Notifications -----

class NotificationOut(BaseModel):
    id: UUID
    user_id: str
    message: str
    title: Optional[str] = None
    category: Optional[str] = None
    is_read: bool
    meta: Dict[str, Any] = Field(default_factory=dict)
    action_url: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)
