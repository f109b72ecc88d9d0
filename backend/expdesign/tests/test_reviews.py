import pytest

from expdesign import ledger, models
from expdesign.services import design_store, executions, publishing, reviews
from expdesign.services.errors import (
    AuthorizationError,
    ConflictError,
    LockedFieldError,
    StaleSuggestionError,
    ValidationError,
)
from .conftest import TestingSessionLocal, design_fields, new_user_id


def _review(db, design, reviewer, *suggestions, **body):
    payload = {"suggestions": list(suggestions), **body}
    return reviews.submit_review(db, design.id, reviewer, payload)


def test_review_round_trip(db, published_design):
    design, author = published_design
    reviewer = new_user_id("reviewer")
    review = _review(db, design, reviewer, {"fieldRef": "steps[1]", "proposedText": "revised text"})
    db.commit()
    assert review.version_number == 1
    assert review.status == "active"
    suggestion = review.suggestions[0]
    assert suggestion.field_ref == "steps[1]"
    assert suggestion.status == "open"

    accepted, draft_created = reviews.accept_suggestion(db, review.id, suggestion.id, author)
    db.commit()

    assert accepted.status == "accepted"
    assert draft_created is True
    assert design.steps[0]["instruction"] == "revised text"
    assert design.has_draft_changes is True
    assert review.status == "resolved"

    contributor = db.get(models.DesignContributor, (design.id, reviewer))
    assert contributor.accepted_suggestion_ids == [str(suggestion.id)]
    events = {(e.user_id, e.event_type) for e in ledger.entries_for_design(db, design.id)}
    assert (reviewer, ledger.DESIGN_REVIEW_SUBMITTED) in events
    assert (reviewer, ledger.REVIEW_SUGGESTION_ACCEPTED_ON_DESIGN) in events


def test_second_accept_reports_existing_draft(db, published_design):
    design, author = published_design
    review = _review(
        db,
        design,
        new_user_id("reviewer"),
        {"fieldRef": "title", "proposedText": "Sharper title"},
        {"fieldRef": "steps[new]", "proposedText": "Record temperature"},
    )
    first, second = review.suggestions
    assert reviews.accept_suggestion(db, review.id, first.id, author)[1] is True
    assert reviews.accept_suggestion(db, review.id, second.id, author)[1] is False
    db.commit()
    assert design.title == "Sharper title"
    assert design.steps[-1]["instruction"] == "Record temperature"
    assert design.steps[-1]["step_number"] == 4


def test_endorsement_requires_comment(db, published_design):
    design, _ = published_design
    with pytest.raises(ValidationError):
        _review(db, design, new_user_id("reviewer"), endorsement=True, generalComment=None)
    with pytest.raises(ValidationError):
        reviews.endorse_design(db, design.id, new_user_id("reviewer"), "  ")


def test_empty_review_rejected(db, published_design):
    design, _ = published_design
    with pytest.raises(ValidationError):
        _review(db, design, new_user_id("reviewer"))


def test_review_rules(db, published_design):
    design, author = published_design
    with pytest.raises(AuthorizationError):
        _review(db, design, author, generalComment="Looks good")
    draft = design_store.create_draft(db, author, design_fields())
    with pytest.raises(ValidationError):
        _review(db, draft, new_user_id("reviewer"), generalComment="Too early")


@pytest.mark.parametrize(
    "bad",
    [
        {"fieldRef": "summary"},
        {"fieldRef": "summary", "newFieldName": "Budget", "comment": "both"},
        {"comment": "neither"},
        {"fieldRef": "materials[1]", "comment": "indexed material"},
        {"fieldRef": "steps[9]", "proposedText": "out of range"},
        {"fieldRef": "title", "comment": "x", "suggestionType": "praise"},
        {"fieldRef": "title", "comment": "x", "removeMaterialIds": ["m1"]},
        {"newFieldName": "summary", "proposedText": "duplicate field"},
    ],
)
def test_invalid_suggestion_rejects_whole_review(db, published_design, bad):
    design, _ = published_design
    reviewer = new_user_id("reviewer")
    with pytest.raises(ValidationError):
        _review(db, design, reviewer, {"fieldRef": "title", "proposedText": "fine"}, bad)
    db.rollback()
    assert reviews._current_review(db, design.id, reviewer) is None
    assert db.query(models.FieldSuggestion).filter_by(design_id=design.id).count() == 0


def test_resubmission_replaces_suggestion_set(db, published_design):
    design, _ = published_design
    reviewer = new_user_id("reviewer")
    first = _review(db, design, reviewer, {"fieldRef": "summary", "comment": "too vague"})
    old = first.suggestions[0]
    second = _review(
        db,
        design,
        reviewer,
        {"fieldRef": "hypothesis", "proposedText": "Light speeds germination by a day"},
        generalComment="Updated thoughts",
    )
    db.commit()
    assert second.id == first.id
    assert old.status == "superseded"
    assert [s.status for s in second.suggestions] == ["superseded", "open"]
    assert second.general_comment == "Updated thoughts"
    assert design.review_count == 1


def test_review_on_new_version_supersedes_old_review(db, published_design):
    design, author = published_design
    reviewer = new_user_id("reviewer")
    old = _review(db, design, reviewer, {"fieldRef": "summary", "comment": "unclear"})
    design_store.update_draft(db, design.id, author, {"analysis_plan": "ANOVA"})
    publishing.publish(db, design.id, author)
    new = _review(db, design, reviewer, generalComment="Better now")
    db.commit()
    assert old.status == "superseded"
    assert old.suggestions[0].status == "superseded"
    assert new.version_number == 2
    assert new.status == "active"


def test_moot_suggestions_superseded_after_field_changes(db, published_design):
    design, author = published_design
    first_reviewer = new_user_id("reviewer")
    review = _review(
        db,
        design,
        first_reviewer,
        {"fieldRef": "summary", "comment": "unclear"},
        {"fieldRef": "analysis_plan", "comment": "missing"},
    )
    moot, unaffected = review.suggestions
    design_store.update_draft(db, design.id, author, {"summary": "Rewritten summary"})
    publishing.publish(db, design.id, author)
    _review(db, design, new_user_id("reviewer"), generalComment="v2 looks fine")
    db.commit()
    assert moot.status == "superseded"
    assert unaffected.status == "open"


def test_stale_accept_keeps_suggestion_open(db, published_design):
    design, author = published_design
    review = _review(db, design, new_user_id("reviewer"), {"fieldRef": "steps[3]", "proposedText": "Count sprouts twice daily"})
    suggestion = review.suggestions[0]
    design_store.update_draft(db, design.id, author, {"steps": [{"instruction": "Soak seeds overnight"}]})
    db.commit()
    version_before = design.version

    with pytest.raises(StaleSuggestionError):
        reviews.accept_suggestion(db, review.id, suggestion.id, author)
    db.rollback()

    refetched = db.get(models.FieldSuggestion, suggestion.id)
    assert refetched.status == "open"
    assert design.version == version_before


def test_accept_follows_reordered_item(db, published_design):
    design, author = published_design
    review = _review(db, design, new_user_id("reviewer"), {"fieldRef": "steps[1]", "proposedText": "Soak seeds for 12 hours"})
    reordered = [design.steps[1], design.steps[0], design.steps[2]]
    design_store.update_draft(db, design.id, author, {"steps": reordered})
    reviews.accept_suggestion(db, review.id, review.suggestions[0].id, author)
    db.commit()
    assert design.steps[1]["instruction"] == "Soak seeds for 12 hours"
    assert design.steps[0]["instruction"] == "Plant 20 seeds per tray"


def test_accept_materials_and_new_field(db, published_design):
    design, author = published_design
    review = _review(
        db,
        design,
        new_user_id("reviewer"),
        {"fieldRef": "materials", "proposedText": "grow lamp; timer", "removeMaterialIds": ["mat-trays"]},
        {"newFieldName": "Budget", "proposedText": "25 USD"},
    )
    for suggestion in review.suggestions:
        reviews.accept_suggestion(db, review.id, suggestion.id, author)
    db.commit()
    assert [m.get("material_id") for m in design.materials] == ["mat-seeds", None, None]
    assert [m.get("description") for m in design.materials[1:]] == ["grow lamp", "timer"]
    assert design.custom_fields == {"Budget": "25 USD"}


def test_accept_blocked_by_methodology_lock_leaves_suggestion_open(db, published_design):
    design, author = published_design
    review = _review(db, design, new_user_id("reviewer"), {"fieldRef": "steps[1]", "proposedText": "new"})
    suggestion = review.suggestions[0]
    # simulate an execution recorded by another process without the lock cascade
    design.execution_count = 1
    db.commit()
    with pytest.raises(LockedFieldError):
        reviews.accept_suggestion(db, review.id, suggestion.id, author)
    db.rollback()
    assert db.get(models.FieldSuggestion, suggestion.id).status == "open"


def test_close_and_reply(db, published_design):
    design, author = published_design
    reviewer = new_user_id("reviewer")
    review = _review(db, design, reviewer, {"fieldRef": "title", "comment": "Consider a shorter title"})
    suggestion = review.suggestions[0]

    with pytest.raises(AuthorizationError):
        reviews.close_suggestion(db, review.id, suggestion.id, reviewer)
    reviews.close_suggestion(db, review.id, suggestion.id, author)
    assert suggestion.status == "closed"
    with pytest.raises(ValidationError):
        reviews.accept_suggestion(db, review.id, suggestion.id, author)

    with pytest.raises(ValidationError):
        reviews.reply_to_suggestion(db, review.id, suggestion.id, author, " ")
    reviews.reply_to_suggestion(db, review.id, suggestion.id, author, "Kept for clarity")
    with pytest.raises(ConflictError):
        reviews.reply_to_suggestion(db, review.id, suggestion.id, author, "Second reply")
    db.commit()
    assert suggestion.owner_reply == "Kept for clarity"


def test_execution_locks_reviews_in_bulk(db, published_design):
    design, author = published_design
    active = _review(db, design, new_user_id("reviewer"), {"fieldRef": "summary", "comment": "a"})
    other = _review(db, design, new_user_id("reviewer"), {"fieldRef": "title", "comment": "b"}, {"fieldRef": "hypothesis", "comment": "c"})
    reviews.close_suggestion(db, other.id, other.suggestions[0].id, author)
    db.commit()

    executions.record_execution(db, design.id, new_user_id("experimenter"))
    db.commit()
    db.expire_all()

    assert active.status == "locked"
    assert active.suggestions[0].status == "locked"
    assert other.suggestions[0].status == "closed"
    assert other.suggestions[1].status == "locked"
    with pytest.raises(ValidationError):
        _review(db, design, new_user_id("reviewer"), generalComment="too late")


def test_endorsement_flow_and_summary(db, published_design):
    design, author = published_design
    endorser = new_user_id("endorser")
    critic = new_user_id("critic")
    reviews.endorse_design(db, design.id, endorser, "Clear and safe")
    again = reviews.endorse_design(db, design.id, endorser, "Still great")
    _review(db, design, critic, {"fieldRef": "steps[2]", "proposedText": "Plant 25 seeds"})
    db.commit()

    assert again.general_comment == "Clear and safe"
    endorsements = reviews.list_endorsements(db, design.id)
    assert [e.reviewer_id for e in endorsements] == [endorser]

    summary = reviews.review_summary(db, design.id, critic)
    assert summary.review_count == 1
    assert summary.endorsement_count == 1
    assert summary.version_number == 1
    assert summary.is_locked is False
    assert summary.reviewable is True
    assert summary.user_has_reviewed is True
    assert reviews.review_summary(db, design.id, None).user_has_reviewed is None
    assert reviews.review_summary(db, design.id, author).reviewable is False

    executions.record_execution(db, design.id, endorser)
    db.commit()
    summary = reviews.review_summary(db, design.id, critic)
    assert summary.is_locked is True
    assert summary.reviewable is False
    contributors = {c.user_id: c for c in summary.contributing_reviewers}
    assert contributors[endorser].endorsed_and_executed is True


def test_publish_credits_accepted_suggestions_once(db, published_design):
    design, author = published_design
    reviewer = new_user_id("reviewer")
    review = _review(db, design, reviewer, {"fieldRef": "summary", "proposedText": "Sharper summary"})
    reviews.accept_suggestion(db, review.id, review.suggestions[0].id, author)
    publishing.publish(db, design.id, author)
    design_store.update_draft(db, design.id, author, {"analysis_plan": "Chi-squared"})
    publishing.publish(db, design.id, author)
    db.commit()

    credited = [
        e
        for e in ledger.entries_for_design(db, design.id)
        if e.event_type == ledger.DESIGN_VERSION_PUBLISHED_WITH_ACCEPTED_SUGGESTION
    ]
    assert [(e.user_id, e.design_version) for e in credited] == [(reviewer, 2)]


def test_concurrent_accept_one_wins(db, published_design, monkeypatch):
    design, author = published_design
    coauthor = new_user_id("coauthor")
    design_store.add_coauthor(db, design.id, author, coauthor)
    reviewer = new_user_id("reviewer")
    review = _review(db, design, reviewer, {"fieldRef": "steps[new]", "proposedText": "Photograph trays daily"})
    suggestion_id = review.suggestions[0].id
    db.commit()
    version_before = design.version

    first = TestingSessionLocal()
    second = TestingSessionLocal()
    checked_open = reviews._require_open

    def accept_elsewhere_after_check(suggestion, target):
        checked_open(suggestion, target)
        monkeypatch.setattr(reviews, "_require_open", checked_open)
        reviews.accept_suggestion(first, review.id, suggestion_id, coauthor)
        first.commit()

    monkeypatch.setattr(reviews, "_require_open", accept_elsewhere_after_check)
    try:
        with pytest.raises(ConflictError):
            reviews.accept_suggestion(second, review.id, suggestion_id, author)
        second.rollback()
    finally:
        first.close()
        second.close()

    db.expire_all()
    assert db.get(models.FieldSuggestion, suggestion_id).status == "accepted"
    assert db.get(models.Design, design.id).version == version_before + 1
    accepted = [
        e
        for e in ledger.entries_for_design(db, design.id)
        if e.event_type == ledger.REVIEW_SUGGESTION_ACCEPTED_ON_DESIGN
    ]
    assert len(accepted) == 1
    contributor = db.get(models.DesignContributor, (design.id, reviewer))
    assert contributor.accepted_suggestion_ids == [str(suggestion_id)]


def test_close_loses_to_concurrent_accept(db, published_design, monkeypatch):
    design, author = published_design
    review = _review(db, design, new_user_id("reviewer"), {"fieldRef": "summary", "proposedText": "Tighter summary"})
    suggestion_id = review.suggestions[0].id
    db.commit()

    first = TestingSessionLocal()
    second = TestingSessionLocal()
    checked_open = reviews._require_open

    def accept_elsewhere_after_check(suggestion, target):
        checked_open(suggestion, target)
        monkeypatch.setattr(reviews, "_require_open", checked_open)
        reviews.accept_suggestion(first, review.id, suggestion_id, author)
        first.commit()

    monkeypatch.setattr(reviews, "_require_open", accept_elsewhere_after_check)
    try:
        with pytest.raises(ConflictError):
            reviews.close_suggestion(second, review.id, suggestion_id, author)
        second.rollback()
    finally:
        first.close()
        second.close()

    db.expire_all()
    assert db.get(models.FieldSuggestion, suggestion_id).status == "accepted"
