"""
API integration tests for the FastAPI app.

Tests the main endpoints and routers using FastAPI TestClient.
"""

from fastapi.testclient import TestClient

from adventure_engine.main import app

client = TestClient(app)


class TestRootEndpoints:
    """Test basic root endpoints"""

    def test_root_endpoint(self):
        """Test the root endpoint returns correct response"""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert "message" in data
        assert "version" in data
        assert data["status"] == "running"

    def test_health_endpoint(self):
        """Test the health check endpoint"""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestValidateEndpoint:
    """Test adventure validation over HTTP"""

    def _cyclic(self):
        return {
            "id": "loop",
            "title": "Loop",
            "startSceneId": "a",
            "scenes": [
                {"id": "a", "title": "A", "content": "a", "choices": [{"id": "go", "text": "Go", "targetSceneId": "b"}]},
                {"id": "b", "title": "B", "content": "b", "choices": [{"id": "back", "text": "Back", "targetSceneId": "a"}]},
            ],
        }

    def test_cycle_is_advisory(self):
        response = client.post("/adventures/validate", json={"adventure": self._cyclic()})
        assert response.status_code == 200
        data = response.json()
        assert data["is_valid"] is False
        assert data["cycle_errors"] == ["Circular reference detected: a -> b -> a"]
        assert data["blocking_errors"] == []

    def test_cycle_blocks_when_strict(self):
        response = client.post("/adventures/validate", json={"adventure": self._cyclic(), "strict": True})
        assert response.json()["blocking_errors"] == ["Circular reference detected: a -> b -> a"]

    def test_missing_body(self):
        response = client.post("/adventures/validate", json={})
        assert response.status_code == 422


class TestEvaluateEndpoint:
    """Test choice evaluation over HTTP"""

    def test_evaluate_choices(self):
        payload = {
            "choices": [
                {"id": "open", "text": "Open"},
                {
                    "id": "read",
                    "text": "Read the runes",
                    "requirements": [{"type": "stat", "key": "wisdom", "operator": "gte", "value": 15}],
                },
                {
                    "id": "secret",
                    "text": "Secret",
                    "isSecret": True,
                    "conditions": [{"type": "flag", "key": "found_map"}],
                },
            ],
            "state": {"stats": {"wisdom": 12}, "flags": {"found_map": True}},
        }
        response = client.post("/adventures/choices/evaluate", json=payload)
        assert response.status_code == 200
        data = response.json()

        by_id = {item["choice_id"]: item["evaluation"] for item in data["evaluations"]}
        assert by_id["open"]["is_selectable"] is True
        assert by_id["read"]["state"] == "LOCKED"
        assert by_id["read"]["reason"] == "Requires wisdom ≥ 15 (currently 12)"
        assert data["newly_discovered"] == ["secret"]

    def test_cooldown_with_supplied_clock(self):
        payload = {
            "choices": [{"id": "rest", "text": "Rest", "cooldown": 5000}],
            "choice_history": [{"choiceId": "rest", "sceneId": "inn", "timestamp": 1000}],
            "now": 3000,
        }
        data = client.post("/adventures/choices/evaluate", json=payload).json()
        evaluation = data["evaluations"][0]["evaluation"]
        assert evaluation["is_selectable"] is False
        assert evaluation["cooldown_remaining_ms"] == 3000
