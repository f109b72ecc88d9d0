from expdesign import audit
from expdesign.services import design_store, publishing
from .conftest import design_fields, new_user_id


def test_mutations_leave_audit_trail(db):
    author = new_user_id("author")
    design = design_store.create_draft(db, author, design_fields())
    design_store.update_draft(db, design.id, author, {"summary": "tightened"})
    publishing.publish(db, design.id, author, changelog="initial release")
    db.commit()

    actions = audit.list_actions(db, design.id)
    assert [a.action for a in actions] == ["design.create", "design.update", "design.publish"]
    assert all(a.user_id == author for a in actions)
    assert actions[1].details["fields"] == ["summary"]
    assert actions[2].details == {"version_number": 1, "changelog": "initial release"}


def test_failed_request_leaves_no_audit_rows(db, published_design):
    design, author = published_design
    before = len(audit.list_actions(db, design.id))
    design_store.update_draft(db, design.id, author, {"summary": "pending"})
    db.rollback()
    assert len(audit.list_actions(db, design.id)) == before
