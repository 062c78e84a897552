"""Affirmations over HTTP."""

from conftest import auth_header


def _headers(client) -> dict:
    guest = client.post("/auth/guest", json={}).json()
    return auth_header(guest["userToken"])


class TestAffirmationRoutes:
    def test_create_list_pin_delete(self, client):
        headers = _headers(client)

        created = client.post("/affirmations", json={"text": " I keep promises ", "category": "habits"}, headers=headers)
        assert created.status_code == 200
        affirmation_id = created.json()["id"]
        client.post("/affirmations", json={"text": "I rest well", "category": "sleep"}, headers=headers)

        listed = client.get("/affirmations", params={"category": "habits"}, headers=headers).json()
        assert listed["ok"] is True
        assert [a["text"] for a in listed["affirmations"]] == ["I keep promises"]

        pinned = client.put(f"/affirmations/{affirmation_id}/pin", headers=headers)
        assert pinned.json() == {"ok": True, "is_pinned": True}
        first = client.get("/affirmations", headers=headers).json()["affirmations"][0]
        assert first["id"] == affirmation_id

        unpinned = client.put(f"/affirmations/{affirmation_id}/pin", json={"isPinned": False}, headers=headers)
        assert unpinned.json()["is_pinned"] is False

        assert client.delete(f"/affirmations/{affirmation_id}", headers=headers).json() == {"ok": True}
        assert client.delete(f"/affirmations/{affirmation_id}", headers=headers).status_code == 404

    def test_put_uses_path_id(self, client):
        headers = _headers(client)

        response = client.put("/affirmations/a1", json={"id": "ignored", "text": "Steady"}, headers=headers)
        assert response.json() == {"ok": True}

        [saved] = client.get("/affirmations", headers=headers).json()["affirmations"]
        assert saved["id"] == "a1"

    def test_text_required(self, client):
        response = client.post("/affirmations", json={"text": ""}, headers=_headers(client))
        assert response.status_code == 400
        assert response.json() == {"ok": False, "error": "text_required"}

    def test_pin_unknown(self, client):
        response = client.put("/affirmations/nope/pin", json={}, headers=_headers(client))
        assert response.status_code == 404
        assert response.json() == {"ok": False, "error": "affirmation_not_found"}

    def test_requires_auth(self, client):
        assert client.get("/affirmations").status_code == 401


class TestWithoutDatabase:
    def test_database_required(self, file_client):
        guest = file_client.post("/auth/guest", json={}).json()
        response = file_client.get("/affirmations", headers=auth_header(guest["userToken"]))
        assert response.status_code == 501
        assert response.json() == {"ok": False, "error": "database_required"}
