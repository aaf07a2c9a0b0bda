"""Tests for family creation, membership and deletion."""

from __future__ import annotations

from tests.conftest import bearer


class TestCreateFamily:
    def test_creator_becomes_parent(self, client, signup) -> None:
        signup("p1")
        resp = client.post("/family", json={"name": "Lees"}, headers=bearer("p1"))
        assert resp.status_code == 200
        body = resp.json()
        assert body["family"]["name"] == "Lees"
        assert [(m["uid"], m["role"]) for m in body["members"]] == [("p1", "parent")]

    def test_user_with_family_cannot_create_another(self, client, household) -> None:
        resp = client.post("/family", json={"name": "Second"}, headers=bearer("parent"))
        assert resp.status_code == 409

    def test_name_too_short_is_rejected(self, client, signup) -> None:
        signup("p1")
        resp = client.post("/family", json={"name": "A"}, headers=bearer("p1"))
        assert resp.status_code == 422


class TestGetFamily:
    def test_returns_members(self, client, household) -> None:
        resp = client.get("/family", headers=bearer("kid"))
        assert resp.status_code == 200
        assert {m["uid"] for m in resp.json()["members"]} == {"parent", "kid", "kid2"}

    def test_user_without_family_gets_not_found(self, client, signup) -> None:
        signup("loner")
        assert client.get("/family", headers=bearer("loner")).status_code == 404


class TestAddMember:
    def test_unknown_email_is_not_found(self, client, household) -> None:
        resp = client.post(
            "/family/members",
            json={"email": "nobody@example.com", "role": "child"},
            headers=bearer("parent"),
        )
        assert resp.status_code == 404

    def test_member_of_other_family_conflicts(self, client, household, signup) -> None:
        signup("other")
        client.post("/family", json={"name": "Others"}, headers=bearer("other"))
        resp = client.post(
            "/family/members",
            json={"email": "other@example.com", "role": "child"},
            headers=bearer("parent"),
        )
        assert resp.status_code == 409

    def test_child_cannot_add_members(self, client, household, signup) -> None:
        signup("newbie")
        resp = client.post(
            "/family/members",
            json={"email": "newbie@example.com", "role": "child"},
            headers=bearer("kid"),
        )
        assert resp.status_code == 400


class TestUpdateMember:
    def test_parent_renames_child(self, client, household) -> None:
        kid_id = household["kid"]["id"]
        resp = client.patch(f"/family/members/{kid_id}", json={"name": "Kimmy"}, headers=bearer("parent"))
        assert resp.status_code == 200
        names = {m["id"]: m["name"] for m in resp.json()["members"]}
        assert names[kid_id] == "Kimmy"

    def test_empty_update_is_bad_request(self, client, household) -> None:
        resp = client.patch(f"/family/members/{household['kid']['id']}", json={}, headers=bearer("parent"))
        assert resp.status_code == 400
        assert resp.json()["detail"] == "No fields to update"

    def test_malformed_member_id_is_bad_request(self, client, household) -> None:
        resp = client.patch("/family/members/not-an-id", json={"role": "parent"}, headers=bearer("parent"))
        assert resp.status_code == 400

    def test_member_outside_family_is_not_found(self, client, household, signup) -> None:
        outsider = signup("outsider")
        resp = client.patch(f"/family/members/{outsider['id']}", json={"role": "child"}, headers=bearer("parent"))
        assert resp.status_code == 404

    def test_child_cannot_update_members(self, client, household) -> None:
        resp = client.patch(f"/family/members/{household['kid2']['id']}", json={"name": "X"}, headers=bearer("kid"))
        assert resp.status_code == 400


class TestDeleteFamily:
    def test_members_survive_without_family(self, client, household, db) -> None:
        resp = client.delete("/family", headers=bearer("parent"))
        assert resp.status_code == 200
        assert db["family"].count_documents({}) == 0
        remaining = list(db["user"].find({}))
        assert len(remaining) == 3
        assert all(u["family_id"] is None and u["role"] is None for u in remaining)

    def test_child_cannot_delete_family(self, client, household, db) -> None:
        resp = client.delete("/family", headers=bearer("kid"))
        assert resp.status_code == 400
        assert db["family"].count_documents({}) == 1

    def test_released_user_can_start_new_family(self, client, household) -> None:
        client.delete("/family", headers=bearer("parent"))
        resp = client.post("/family", json={"name": "Fresh"}, headers=bearer("kid"))
        assert resp.status_code == 200
