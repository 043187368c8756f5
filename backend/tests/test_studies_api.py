# SPDX-License-Identifier: Apache-2.0
"""Study registration endpoints."""

STUDY = {
    "name": "Night Owls",
    "ledger_ref": "0xNight",
    "start_offset_seconds": 79200,
    "end_offset_seconds": 93600,
    "deposit_amount": "100",
    "penalty_amount": "10",
}


def test_create_and_get_study(client):
    r = client.post("/studies", json=STUDY)
    assert r.status_code == 200
    body = r.json()
    assert body["created"] is True
    assert body["study"]["ledger_ref"] == "0xnight"
    assert body["study"]["window"] == "22:00 ~ 02:00 (+1d)"
    assert body["study"]["overnight"] is True
    got = client.get(f"/studies/{body['study_id']}").json()
    assert got["name"] == "Night Owls"
    assert len(client.get("/studies").json()) == 1


def test_create_study_is_idempotent(client):
    first = client.post("/studies", json=STUDY).json()
    second = client.post("/studies", json={**STUDY, "ledger_ref": "0XNIGHT"}).json()
    assert second["created"] is False
    assert second["study_id"] == first["study_id"]


def test_invalid_window_rejected(client):
    r = client.post("/studies", json={**STUDY, "end_offset_seconds": 79200 + 86400})
    assert r.status_code == 400
    assert "24 hours" in r.json()["error"]


def test_study_not_found(client):
    assert client.get("/studies/99").status_code == 404
    assert client.get("/studies/99/participants").status_code == 404
    r = client.post("/studies/99/join", json={"github_email": "a@b.c", "wallet_address": "0x1"})
    assert r.status_code == 404


def test_join_and_register_repository(client):
    study_id = client.post("/studies", json=STUDY).json()["study_id"]
    joined = client.post(
        f"/studies/{study_id}/join", json={"github_email": "Alice@Example.com", "wallet_address": "0xAAA"}
    ).json()
    assert joined["created"] is True
    assert joined["wallet_address"] == "0xaaa"
    rejoined = client.post(
        f"/studies/{study_id}/join", json={"github_email": "alice@example.com", "wallet_address": "0xAAA"}
    ).json()
    assert rejoined["created"] is False

    repo = client.post(
        f"/studies/{study_id}/repositories",
        json={"github_email": "alice@example.com", "repo_url": "https://github.com/Org/Repo.git"},
    ).json()
    assert repo["repo_url"] == "https://github.com/org/repo"

    (participant,) = client.get(f"/studies/{study_id}/participants").json()
    assert participant["github_email"] == "alice@example.com"
    assert participant["repositories"] == ["https://github.com/org/repo"]

    studies = client.get("/participants/ALICE@example.com/studies").json()
    assert [s["ledger_ref"] for s in studies] == ["0xnight"]


def test_register_repository_unknown_participant(client):
    study_id = client.post("/studies", json=STUDY).json()["study_id"]
    r = client.post(
        f"/studies/{study_id}/repositories",
        json={"github_email": "ghost@example.com", "repo_url": "https://github.com/org/repo"},
    )
    assert r.status_code == 404


def test_health_and_info(client):
    assert client.get("/system/health").json() == {"status": "ok"}
    info = client.get("/system/info").json()
    assert info["local_utc_offset_seconds"] == 9 * 3600
    assert info["scheduler_enabled"] is False
    assert client.get("/system/health").headers["X-Content-Type-Options"] == "nosniff"
