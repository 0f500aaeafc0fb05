# tests/integration/api/test_int_api.py - v1
"""Webhook to production through the HTTP surface."""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from stagegate.api.http import create_app

pytestmark = pytest.mark.slow

PUSH = {
    "ref": "refs/heads/main",
    "after": "c0ffee1",
    "repository": {"full_name": "acme/webapp"},
    "pusher": {"name": "octocat"},
}


@pytest.fixture
def client(controller, delivery_definition):
    asyncio.run(controller.register_pipeline(delivery_definition))
    with TestClient(create_app(controller)) as c:
        yield c


def _started(client: TestClient) -> str:
    response = client.post("/webhooks/source", json=PUSH)
    assert response.status_code == 202
    started = response.json()["started"]
    assert len(started) == 1
    return started[0]


class TestHttpFlow:
    def test_push_approve_and_report(self, client, deploy_target):
        execution_id = _started(client)

        report = client.get(f"/executions/{execution_id}").json()
        assert report["outcome"] == "suspended"
        assert report["current_stage"] == "Approve"
        assert report["approvals"][0]["state"] == "pending"

        response = client.post(
            f"/executions/{execution_id}/approval",
            json={"decision": "approve", "actor": "lead", "comment": "ship it"},
        )
        assert response.status_code == 200
        assert response.json() == {"execution_id": execution_id, "status": "succeeded"}

        history = client.get(f"/executions/{execution_id}/history").json()
        assert history[-1]["event"] == "execution_succeeded"
        assert history[0]["actor"] == "octocat"

        again = client.post(
            f"/executions/{execution_id}/approval",
            json={"decision": "reject", "actor": "lead"},
        )
        assert again.status_code == 409
        assert again.json()["error_type"] == "AlreadyDecided"

    def test_reject(self, client):
        execution_id = _started(client)
        response = client.post(
            f"/executions/{execution_id}/approval",
            json={"decision": "reject", "actor": "lead", "comment": "no"},
        )
        assert response.json()["status"] == "failed"
        report = client.get(f"/executions/{execution_id}").json()
        assert report["failure"]["error_type"] == "ApprovalRejected"

    def test_cancel(self, client):
        execution_id = _started(client)
        response = client.post(
            f"/executions/{execution_id}/cancel", json={"reason": "freeze"}
        )
        assert response.json()["status"] == "cancelled"

    def test_wrong_request_id(self, client):
        execution_id = _started(client)
        response = client.post(
            f"/executions/{execution_id}/approval",
            json={"decision": "approve", "actor": "lead", "request_id": "apr-unknown"},
        )
        assert response.status_code == 404
