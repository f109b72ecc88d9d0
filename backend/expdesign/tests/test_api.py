from .conftest import as_user, design_fields, new_user_id


def _create_published(client, author):
    resp = client.post("/api/designs/", json=design_fields(), headers=as_user(author))
    assert resp.status_code == 201, resp.text
    design_id = resp.json()["id"]
    resp = client.post(f"/api/designs/{design_id}/publish", json={}, headers=as_user(author))
    assert resp.status_code == 200, resp.text
    return design_id


def test_mutations_require_identity(client):
    resp = client.post("/api/designs/", json=design_fields())
    assert resp.status_code == 401


def test_create_validation_error_maps_to_400(client):
    resp = client.post(
        "/api/designs/", json=design_fields(steps=[]), headers=as_user(new_user_id())
    )
    assert resp.status_code == 400
    assert "step" in resp.json()["detail"]


def test_draft_hidden_until_published(client):
    author = new_user_id("author")
    resp = client.post("/api/designs/", json=design_fields(), headers=as_user(author))
    design_id = resp.json()["id"]

    assert client.get(f"/api/designs/{design_id}").status_code == 404
    assert client.get(f"/api/designs/{design_id}", headers=as_user(author)).status_code == 200

    client.post(f"/api/designs/{design_id}/publish", json={"changelog": "First release"}, headers=as_user(author))
    data = client.get(f"/api/designs/{design_id}").json()
    assert data["status"] == "published"
    assert data["published_version"] == 1

    versions = client.get(f"/api/designs/{design_id}/versions").json()
    assert [(v["version_number"], v["changelog"]) for v in versions] == [(1, "First release")]
    snapshot = client.get(f"/api/designs/{design_id}/versions/1").json()
    assert snapshot["data"]["title"] == design_fields()["title"]
    assert client.get(f"/api/designs/{design_id}/versions/2").status_code == 404


def test_stale_publish_returns_409(client):
    author = new_user_id("author")
    design_id = _create_published(client, author)
    client.patch(f"/api/designs/{design_id}", json={"summary": "v2"}, headers=as_user(author))
    resp = client.post(
        f"/api/designs/{design_id}/publish",
        json={"expected_published_version": 0},
        headers=as_user(author),
    )
    assert resp.status_code == 409
    assert client.get(f"/api/designs/{design_id}", headers=as_user(author)).json()["published_version"] == 1


def test_review_accept_flow_over_http(client):
    author = new_user_id("author")
    reviewer = new_user_id("reviewer")
    design_id = _create_published(client, author)

    resp = client.post(
        f"/api/designs/{design_id}/reviews",
        json={
            "generalComment": "Nice design",
            "readinessSignal": "almost_ready",
            "suggestions": [{"fieldRef": "steps[1]", "proposedText": "revised text", "suggestionType": "suggestion"}],
        },
        headers=as_user(reviewer),
    )
    assert resp.status_code == 201, resp.text
    review = resp.json()
    assert review["readinessSignal"] == "almost_ready"
    suggestion_id = review["suggestions"][0]["id"]

    resp = client.post(
        f"/api/designs/{design_id}/reviews/{review['id']}/suggestions/{suggestion_id}/accept",
        headers=as_user(reviewer),
    )
    assert resp.status_code == 403

    resp = client.post(
        f"/api/designs/{design_id}/reviews/{review['id']}/suggestions/{suggestion_id}/accept",
        headers=as_user(author),
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["draftCreated"] is True
    assert body["suggestion"]["status"] == "accepted"

    draft = client.get(f"/api/designs/{design_id}", headers=as_user(author)).json()
    assert draft["steps"][0]["instruction"] == "revised text"
    assert draft["has_draft_changes"] is True
    public = client.get(f"/api/designs/{design_id}").json()
    assert public["steps"][0]["instruction"] == "Soak seeds overnight"

    resp = client.post(
        f"/api/designs/{design_id}/reviews/{review['id']}/suggestions/{suggestion_id}/reply",
        json={"reply": "Thanks!"},
        headers=as_user(author),
    )
    assert resp.json()["ownerReply"] == "Thanks!"
    resp = client.post(
        f"/api/designs/{design_id}/reviews/{review['id']}/suggestions/{suggestion_id}/reply",
        json={"reply": "Again"},
        headers=as_user(author),
    )
    assert resp.status_code == 409

    summary = client.get(f"/api/designs/{design_id}/review-summary", headers=as_user(reviewer)).json()
    assert summary["reviewCount"] == 1
    assert summary["userHasReviewed"] is True
    assert summary["contributingReviewers"][0]["userId"] == reviewer


def test_invalid_review_returns_400(client):
    author = new_user_id("author")
    design_id = _create_published(client, author)
    resp = client.post(
        f"/api/designs/{design_id}/reviews",
        json={"endorsement": True},
        headers=as_user(new_user_id("reviewer")),
    )
    assert resp.status_code == 400


def test_locked_fields_return_409_after_execution(client):
    author = new_user_id("author")
    design_id = _create_published(client, author)
    resp = client.post(f"/api/designs/{design_id}/executions", headers=as_user(new_user_id("runner")))
    assert resp.status_code == 201
    assert resp.json()["design_version"] == 1

    resp = client.patch(
        f"/api/designs/{design_id}",
        json={"hypothesis": "changed"},
        headers=as_user(author),
    )
    assert resp.status_code == 409
    assert "hypothesis" in resp.json()["detail"]

    resp = client.patch(
        f"/api/designs/{design_id}",
        json={"summary": "still editable"},
        headers=as_user(author),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "locked"


def test_fork_and_coauthors_over_http(client):
    author = new_user_id("author")
    design_id = _create_published(client, author)
    forker = new_user_id("forker")
    resp = client.post(
        f"/api/designs/{design_id}/fork",
        json={"fork_type": "iteration", "fork_rationale": "Try LED lighting"},
        headers=as_user(forker),
    )
    assert resp.status_code == 201, resp.text
    child = resp.json()
    assert child["fork_metadata"]["fork_generation"] == 1
    assert child["author_ids"] == [forker]

    resp = client.post(f"/api/designs/{child['id']}/coauthors", json={"user_id": author}, headers=as_user(forker))
    assert resp.json()["author_ids"] == [forker, author]
    resp = client.delete(f"/api/designs/{child['id']}/coauthors/{forker}", headers=as_user(author))
    assert resp.status_code == 422
    resp = client.delete(f"/api/designs/{child['id']}/coauthors/{author}", headers=as_user(forker))
    assert resp.json()["author_ids"] == [forker]

    mine = client.get("/api/designs/mine", headers=as_user(forker)).json()
    assert child["id"] in {d["id"] for d in mine}


def test_notifications_for_authors(client):
    author = new_user_id("author")
    design_id = _create_published(client, author)
    client.post(
        f"/api/designs/{design_id}/endorsements",
        json={"comment": "Great protocol"},
        headers=as_user(new_user_id("endorser")),
    )
    notes = client.get("/api/notifications/", headers=as_user(author)).json()
    assert notes
    assert notes[0]["category"] == "review"
    assert notes[0]["action_url"] == f"/designs/{design_id}"

    resp = client.post("/api/notifications/mark-all-read", headers=as_user(author))
    assert resp.json()["updated"] == len(notes)
    assert client.get("/api/notifications/?unread_only=true", headers=as_user(author)).json() == []


def test_metrics_endpoint(client):
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert b"request_count" in resp.content


def test_cancel_execution_over_http(client):
    author = new_user_id("author")
    design_id = _create_published(client, author)
    runner = new_user_id("runner")
    execution = client.post(f"/api/designs/{design_id}/executions", headers=as_user(runner)).json()

    url = f"/api/designs/{design_id}/executions/{execution['id']}"
    assert client.delete(url, headers=as_user(author)).status_code == 403
    resp = client.delete(url, headers=as_user(runner))
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"
    assert client.get(f"/api/designs/{design_id}").json()["status"] == "published"
