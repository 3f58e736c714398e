"""
Tests for the HTTP server
"""

import pytest
from fastapi.testclient import TestClient

from server import app


@pytest.fixture
def client():
    return TestClient(app)


class TestServiceInfo:
    """Tests for /health and /"""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_root(self, client):
        data = client.get("/").json()

        assert "version" in data
        assert data["policy"]["tag_prefix"] == "v"


class TestVersionEndpoint:
    """Tests for POST /version"""

    def test_minor_bump(self, client):
        response = client.post("/version", json={
            "previous_tag": "v1.2.3",
            "commits": [
                {"message": "fix bug (IGNORE)"},
                {"message": "add feature (MINOR)"},
                {"message": "refactor"},
            ],
        })

        assert response.status_code == 200
        data = response.json()
        assert data["bump_level"] == "MINOR"
        assert data["computed_version"] == "1.3.0"
        assert data["changelog"] == ["* add feature (MINOR)", "* refactor"]
        assert data["changelog_text"] == "* add feature (MINOR)\n* refactor"

    def test_bootstrap(self, client):
        data = client.post("/version", json={"commits": [{"message": "initial (MAJOR)"}]}).json()

        assert data["bootstrapped"] is True
        assert data["previous_version"] == "0.1.0"
        assert data["computed_version"] == "1.0.0"

    def test_bad_tag(self, client):
        response = client.post("/version", json={"previous_tag": "latest", "commits": []})
        assert response.status_code == 400


class TestGateEndpoint:
    """Tests for POST /gate"""

    def test_blocked(self, client):
        response = client.post("/gate", json={
            "previous_tag": "v1.0.0",
            "commits": [{"message": "new endpoint"}],
            "api_diff": "additive",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["passed"] is False
        assert data["required_minimum_bump"] == "MINOR"
        assert data["required_marker"] == "(MINOR)"
        assert data["version"]["computed_version"] == "1.0.1"

    def test_passed(self, client):
        data = client.post("/gate", json={
            "previous_tag": "v1.0.0",
            "commits": [{"message": "drop old API (MAJOR)"}],
            "api_diff": "breaking",
        }).json()

        assert data["passed"] is True
        assert data["version"]["computed_version"] == "2.0.0"

    def test_invalid_api_diff(self, client):
        response = client.post("/gate", json={"commits": [], "api_diff": "huge"})
        assert response.status_code == 400


class TestMatrixEndpoint:
    """Tests for POST /matrix"""

    def test_expand(self, client):
        response = client.post("/matrix", json={
            "job_id": "cargo-deny",
            "job": {
                "run": "cargo deny check ${{ matrix.checks }}",
                "matrix": {"checks": ["advisories", "bans licenses sources"]},
                "tolerant_when": {"checks": ["advisories"]},
            },
        })

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert data["instances"][0]["command"] == "cargo deny check advisories"
        assert data["instances"][0]["tolerant"] is True
        assert data["instances"][1]["tolerant"] is False

    def test_invalid_template(self, client):
        response = client.post("/matrix", json={"job": {"run": "x", "matrix": {"os": []}}})
        assert response.status_code == 400


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
