"""Habits, packages and export jobs over HTTP with a connected Canva account."""

import base64
import json
from unittest.mock import patch

import pytest

from conftest import auth_header, connect_canva


def _design_token(design_id: str) -> str:
    payload = base64.urlsafe_b64encode(json.dumps({"designId": design_id}).encode()).rstrip(b"=").decode()
    return f"eyJhbGciOiJIUzI1NiJ9.{payload}.signature"


@pytest.fixture
def connected(client) -> dict:
    result = connect_canva(client)
    return auth_header(result["userToken"])


class TestHabits:
    def test_replace_and_read(self, client, connected):
        response = client.post(
            "/habits",
            json={"habits": [{"id": "h1", "name": "Run"}, {"id": "", "name": "x"}, "junk", {"id": 2, "name": "Read"}]},
            headers=connected,
        )
        assert response.json() == {"ok": True, "habits": [{"id": "h1", "name": "Run"}, {"id": "2", "name": "Read"}]}
        assert client.get("/habits", headers=connected).json()["habits"][0]["name"] == "Run"


class TestPackages:
    def test_store_and_list(self, client, connected):
        first = client.post(
            "/canva/sync",
            json={"designId": "D1", "title": "Board", "mappedElements": [{"habitId": "h1"}]},
            headers=connected,
        ).json()
        second = client.post(
            "/canva/sync", json={"designToken": _design_token("D2")}, headers=connected
        ).json()

        packages = client.get("/canva/packages", headers=connected).json()["packages"]
        assert [p["id"] for p in packages] == [second["packageId"], first["packageId"]]
        assert packages[0]["designId"] == "D2"
        assert packages[1]["hasExport"] is False

        latest = client.get("/canva/packages/latest", headers=connected).json()["package"]
        assert latest["id"] == second["packageId"]

        one = client.get(f"/canva/packages/{first['packageId']}", headers=connected).json()["package"]
        assert one["mappedElements"] == [{"habitId": "h1"}]

    def test_missing_design_id(self, client, connected):
        response = client.post("/canva/sync", json={"title": "no design"}, headers=connected)
        assert response.status_code == 400
        assert response.json()["error"] == "missing_designId"

    def test_no_packages_yet(self, client, connected):
        response = client.get("/canva/packages/latest", headers=connected)
        assert response.status_code == 404
        assert response.json()["error"] == "no_packages"

    def test_unknown_package(self, client, connected):
        response = client.get("/canva/packages/nope", headers=connected)
        assert response.status_code == 404
        assert response.json()["error"] == "package_not_found"


class TestExports:
    def _package(self, client, headers) -> str:
        return client.post("/canva/sync", json={"designId": "D1"}, headers=headers).json()["packageId"]

    def test_synchronously_settled_export(self, client, connected, fake_canva):
        package_id = self._package(client, connected)
        fake_canva.create_export_job.return_value = {
            "id": "canva-job-1",
            "status": "success",
            "urls": ["https://export.canva.com/1.png"],
        }

        response = client.post("/canva/export", json={"packageId": package_id}, headers=connected)

        assert response.status_code == 202
        job = response.json()["job"]
        assert job["state"] == "completed"
        assert job["urls"] == ["https://export.canva.com/1.png"]
        assert fake_canva.create_export_job.call_args.kwargs["access_token"] == "canva-access"
        assert fake_canva.create_export_job.call_args.kwargs["format"] == {"type": "png"}

        fetched = client.get(f"/canva/export/{job['id']}", headers=connected).json()["job"]
        assert fetched["state"] == "completed"

        package = client.get(f"/canva/packages/{package_id}", headers=connected).json()["package"]
        assert package["export"]["jobId"] == "canva-job-1"
        assert package["export"]["status"] == "success"
        packages = client.get("/canva/packages", headers=connected).json()["packages"]
        assert packages[0]["hasExport"] is True

    def test_in_progress_export_is_handed_to_worker(self, client, connected, fake_canva):
        package_id = self._package(client, connected)
        fake_canva.create_export_job.return_value = {"id": "canva-job-2", "status": "in_progress"}

        with patch("visionboard.tasks.export_tasks.poll_export_job.delay") as delay:
            response = client.post(
                "/canva/export", json={"packageId": package_id, "format": {"type": "jpg"}}, headers=connected
            )

        job = response.json()["job"]
        assert job["state"] == "polling"
        assert job["providerJobId"] == "canva-job-2"
        delay.assert_called_once_with(job["id"])

    def test_successful_status_without_urls_fails(self, client, connected, fake_canva):
        package_id = self._package(client, connected)
        fake_canva.create_export_job.return_value = {"id": "canva-job-3", "status": "success"}

        job = client.post("/canva/export", json={"packageId": package_id}, headers=connected).json()["job"]
        assert job["state"] == "failed"
        assert job["error"] == {"code": "export_missing_urls"}

    def test_unknown_package(self, client, connected):
        response = client.post("/canva/export", json={"packageId": "missing"}, headers=connected)
        assert response.status_code == 404

    def test_export_requires_canva_tokens(self, client):
        guest = client.post("/auth/guest", json={}).json()
        headers = auth_header(guest["userToken"])
        package_id = self._package(client, headers)

        response = client.post("/canva/export", json={"packageId": package_id}, headers=headers)
        assert response.status_code == 400
        assert response.json()["error"] == "missing_canva_token"

    def test_jobs_are_private(self, client, connected, fake_canva):
        package_id = self._package(client, connected)
        fake_canva.create_export_job.return_value = {"id": "j", "status": "success", "urls": ["u"]}
        job = client.post("/canva/export", json={"packageId": package_id}, headers=connected).json()["job"]

        guest = client.post("/auth/guest", json={}).json()
        response = client.get(f"/canva/export/{job['id']}", headers=auth_header(guest["userToken"]))
        assert response.status_code == 404
        assert response.json()["error"] == "export_job_not_found"
