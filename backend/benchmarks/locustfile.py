import uuid

from locust import HttpUser, task, between

DESIGN = {
    "title": "bench design",
    "summary": "load test design",
    "discipline_tags": ["chemistry"],
    "materials": [{"material_id": "bench-beaker", "quantity": "1"}],
    "steps": [{"instruction": "Fill beaker"}, {"instruction": "Measure pH"}],
    "research_questions": [{"question": "What is the pH?"}],
}


class DesignUser(HttpUser):
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = {"X-User-Id": f"bench-{uuid.uuid4().hex[:8]}"}
        self.reviewer = {"X-User-Id": f"bench-reviewer-{uuid.uuid4().hex[:8]}"}
        r = self.client.post("/api/designs/", json=DESIGN, headers=self.headers)
        self.design_id = r.json().get("id")
        self.client.post(f"/api/designs/{self.design_id}/publish", json={}, headers=self.headers)

    @task(3)
    def list_designs(self):
        self.client.get("/api/designs/")

    @task(2)
    def review_summary(self):
        self.client.get(f"/api/designs/{self.design_id}/review-summary", headers=self.reviewer)

    @task(1)
    def review_and_accept(self):
        r = self.client.post(
            f"/api/designs/{self.design_id}/reviews",
            json={"suggestions": [{"fieldRef": "summary", "proposedText": f"summary {uuid.uuid4().hex[:6]}"}]},
            headers=self.reviewer,
        )
        if r.status_code != 201:
            return
        review = r.json()
        suggestion = review["suggestions"][-1]
        self.client.post(
            f"/api/designs/{self.design_id}/reviews/{review['id']}/suggestions/{suggestion['id']}/accept",
            headers=self.headers,
        )
        self.client.post(f"/api/designs/{self.design_id}/publish", json={}, headers=self.headers)
