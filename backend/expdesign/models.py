import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Fields frozen once a design has at least one recorded execution.
METHODOLOGY_FIELDS = (
    "steps",
    "materials",
    "independent_variables",
    "dependent_variables",
    "controlled_variables",
    "research_questions",
    "hypothesis",
)

# Current-state fields captured into every published snapshot.
CONTENT_FIELDS = (
    "title",
    "summary",
    "hypothesis",
    "discipline_tags",
    "difficulty_level",
    "materials",
    "steps",
    "research_questions",
    "independent_variables",
    "dependent_variables",
    "controlled_variables",
    "safety_considerations",
    "ethical_considerations",
    "analysis_plan",
    "disclaimers",
    "collaboration_notes",
    "seeking_collaborators",
    "statistical_methods",
    "references",
    "cover_image_url",
    "design_files",
    "reference_design_ids",
    "custom_fields",
)


class Design(Base):
    __tablename__ = "designs"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(String, nullable=False)

    title = Column(String(200), nullable=False)
    summary = Column(Text, nullable=False)
    hypothesis = Column(Text, nullable=True)
    discipline_tags = Column(JSON, default=list)
    difficulty_level = Column(String, nullable=True)
    materials = Column(JSON, default=list)
    steps = Column(JSON, default=list)
    research_questions = Column(JSON, default=list)
    independent_variables = Column(JSON, default=list)
    dependent_variables = Column(JSON, default=list)
    controlled_variables = Column(JSON, default=list)
    safety_considerations = Column(Text, nullable=True)
    ethical_considerations = Column(Text, nullable=True)
    analysis_plan = Column(Text, nullable=True)
    disclaimers = Column(Text, nullable=True)
    collaboration_notes = Column(Text, nullable=True)
    seeking_collaborators = Column(Boolean, default=False)
    statistical_methods = Column(JSON, default=list)
    references = Column(JSON, default=list)
    cover_image_url = Column(String, nullable=True)
    design_files = Column(JSON, default=list)
    reference_design_ids = Column(JSON, default=list)
    # proposals accepted from new-field suggestions, keyed by field name
    custom_fields = Column(JSON, default=dict)

    # lifecycle: draft -> published -> locked
    status = Column(String, default="draft", nullable=False)
    version = Column(Integer, default=1, nullable=False)
    published_version = Column(Integer, default=0, nullable=False)
    has_draft_changes = Column(Boolean, default=False, nullable=False)
    pending_changelog = Column(Text, nullable=True)

    execution_count = Column(Integer, default=0, nullable=False)
    derived_design_count = Column(Integer, default=0, nullable=False)
    review_count = Column(Integer, default=0, nullable=False)
    fork_metadata = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    authors = relationship(
        "DesignAuthor",
        back_populates="design",
        cascade="all, delete-orphan",
        order_by="DesignAuthor.added_at",
    )
    versions = relationship(
        "DesignVersion",
        back_populates="design",
        order_by="DesignVersion.version_number",
    )
    reviews = relationship("DesignReview", back_populates="design")

    @property
    def author_ids(self) -> list[str]:
        return [author.user_id for author in self.authors]

    def is_author(self, user_id: str | None) -> bool:
        return user_id is not None and user_id in self.author_ids


class DesignAuthor(Base):
    __tablename__ = "design_authors"
    design_id = Column(UUID(as_uuid=True), ForeignKey("designs.id"), primary_key=True)
    user_id = Column(String, primary_key=True)
    role = Column(String, default="coauthor")  # owner, coauthor
    added_at = Column(DateTime(timezone=True), default=_utcnow)

    design = relationship("Design", back_populates="authors")


class DesignVersion(Base):
    __tablename__ = "design_versions"
    __table_args__ = (
        sa.UniqueConstraint("design_id", "version_number", name="uq_design_version_number"),
    )
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    design_id = Column(UUID(as_uuid=True), ForeignKey("designs.id"), nullable=False)
    version_number = Column(Integer, nullable=False)
    published_at = Column(DateTime(timezone=True), default=_utcnow)
    published_by = Column(String, nullable=False)
    changelog = Column(Text, nullable=True)
    data = Column(JSON, nullable=False)

    design = relationship("Design", back_populates="versions")


class DesignReview(Base):
    __tablename__ = "design_reviews"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    design_id = Column(UUID(as_uuid=True), ForeignKey("designs.id"), nullable=False)
    version_number = Column(Integer, nullable=False)
    reviewer_id = Column(String, nullable=False)
    general_comment = Column(Text, nullable=True)
    readiness_signal = Column(String, nullable=True)
    endorsement = Column(Boolean, default=False, nullable=False)
    status = Column(String, default="active", nullable=False)  # active, resolved, superseded, locked
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    design = relationship("Design", back_populates="reviews")
    suggestions = relationship(
        "FieldSuggestion",
        back_populates="review",
        cascade="all, delete-orphan",
        order_by="FieldSuggestion.position",
    )


class FieldSuggestion(Base):
    __tablename__ = "field_suggestions"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    review_id = Column(UUID(as_uuid=True), ForeignKey("design_reviews.id"), nullable=False)
    design_id = Column(UUID(as_uuid=True), ForeignKey("designs.id"), nullable=False)
    version_number = Column(Integer, nullable=False)
    position = Column(Integer, default=0, nullable=False)
    field_ref = Column(String, nullable=True)
    new_field_name = Column(String, nullable=True)
    proposed_text = Column(Text, nullable=True)
    comment = Column(Text, nullable=True)
    suggestion_type = Column(String, nullable=True)
    status = Column(String, default="open", nullable=False)  # open, accepted, closed, superseded, locked
    owner_reply = Column(Text, nullable=True)
    remove_material_ids = Column(JSON, default=list)
    # value of the addressed field/item in the reviewed snapshot
    bound_value = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    review = relationship("DesignReview", back_populates="suggestions")


class DesignContributor(Base):
    __tablename__ = "design_contributors"
    design_id = Column(UUID(as_uuid=True), ForeignKey("designs.id"), primary_key=True)
    user_id = Column(String, primary_key=True)
    version_number = Column(Integer, nullable=False)
    accepted_suggestion_ids = Column(JSON, default=list)
    # accepted ids already credited by a publish
    credited_suggestion_ids = Column(JSON, default=list)
    endorsed_and_executed = Column(Boolean, default=False, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class DesignExecution(Base):
    __tablename__ = "design_executions"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    design_id = Column(UUID(as_uuid=True), ForeignKey("designs.id"), nullable=False)
    design_version = Column(Integer, nullable=False)
    experimenter_id = Column(String, nullable=False)
    status = Column(String, default="in_progress")
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class ContributionLedgerEntry(Base):
    __tablename__ = "contribution_ledger"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False, index=True)
    event_type = Column(String, nullable=False)
    design_id = Column(UUID(as_uuid=True), nullable=True)
    design_version = Column(Integer, nullable=True)
    review_id = Column(UUID(as_uuid=True), nullable=True)
    suggestion_id = Column(UUID(as_uuid=True), nullable=True)
    referencing_design_id = Column(UUID(as_uuid=True), nullable=True)
    fork_design_id = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False)
    action = Column(String, nullable=False)
    target_type = Column(String)
    target_id = Column(UUID(as_uuid=True))
    details = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class Notification(Base):
    __tablename__ = "notifications"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False, index=True)
    message = Column(String, nullable=False)
    title = Column(String, nullable=True)
    category = Column(String, nullable=True)  # review, suggestion, fork, execution
    is_read = Column(Boolean, default=False)
    meta = Column(JSON, default=dict)  # design_id, review_id, action, actor_id
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    @property
    def action_url(self) -> str | None:
        meta = self.meta or {}
        return meta.get("action_url")
