from __future__ import annotations

import pytest


@pytest.mark.asyncio
async def test_health_endpoints(api_client):
	live = await api_client.get("/health/live")
	assert live.status_code == 200
	assert live.json()["status"] == "ok"

	ready = await api_client.get("/health/ready")
	assert ready.status_code == 200
	assert ready.json() == {"status": "ok", "redis": "up"}


@pytest.mark.asyncio
async def test_metrics_exposes_prometheus_text(api_client):
	await api_client.get("/health")

	response = await api_client.get("/metrics")

	assert response.status_code == 200
	assert response.headers["content-type"].startswith("text/plain")


@pytest.mark.asyncio
async def test_private_metrics_require_admin_token(api_client, force_test_settings):
	force_test_settings.obs_metrics_public = False
	force_test_settings.obs_admin_token = "secret"

	denied = await api_client.get("/metrics")
	allowed = await api_client.get("/metrics", headers={"X-Admin-Token": "secret"})

	assert denied.status_code == 403
	assert allowed.status_code == 200


@pytest.mark.asyncio
async def test_reconcile_member_count(api_client, force_test_settings):
	created = await api_client.post("/api/v1/groups", json={"name": "Readers"}, headers={"X-User-Id": "creator"})
	group_id = created.json()["id"]
	force_test_settings.obs_admin_token = "secret"

	denied = await api_client.post(f"/ops/groups/{group_id}/reconcile-count")
	response = await api_client.post(
		f"/ops/groups/{group_id}/reconcile-count",
		headers={"Authorization": "Bearer secret"},
	)
	missing = await api_client.post("/ops/groups/nope/reconcile-count", headers={"X-Admin-Token": "secret"})

	assert denied.status_code == 403
	assert response.json() == {"group_id": group_id, "member_count": 1}
	assert missing.status_code == 404
