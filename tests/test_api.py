import io

import pandas as pd
import pytest
from fastapi.testclient import TestClient

import main
from data_alchemist.backend import DataManager


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(main, "global_data_manager", None)
    return TestClient(main.app)


@pytest.fixture
def loaded(monkeypatch, clients, workers, tasks):
    dm = DataManager()
    dm.load_records(clients, workers, tasks)
    monkeypatch.setattr(main, "global_data_manager", dm)
    return dm


def _csv(records) -> bytes:
    buffer = io.StringIO()
    pd.DataFrame(records).to_csv(buffer, index=False)
    return buffer.getvalue().encode("utf-8")


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_validate_without_data_is_400(client):
    response = client.get("/validate")

    assert response.status_code == 400
    assert response.json() == {"status": "error", "message": "No data loaded. Please upload files first."}


def test_upload_returns_errors_and_data(client, clients, workers, tasks):
    clients[0]["PriorityLevel"] = 8

    response = client.post(
        "/upload",
        files={
            "clients": ("clients.csv", _csv(clients), "text/csv"),
            "workers": ("workers.csv", _csv(workers), "text/csv"),
            "tasks": ("tasks.csv", _csv(tasks), "text/csv"),
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["errors"] == {"C1": ["PriorityLevel must be between 1-5"]}
    assert body["summary"]["total_tasks"] == 3
    assert len(body["data"]["workers"]) == 2


def test_rule_lifecycle(client, loaded):
    response = client.post("/rules", json={"type": "coRun", "parameters": {"tasks": ["T1", "T7"]}})
    assert response.status_code == 200
    assert response.json()["rule"]["validationMessage"] == "Tasks not found: T7"
    assert response.json()["summary"] == {"valid": 0, "invalid": 1, "warnings": 0}
    assert response.json()["exportable"] is False

    assert client.post("/export").status_code == 409

    response = client.delete("/rules/0")
    assert response.status_code == 200
    assert response.json()["rules"] == []

    assert client.delete("/rules/0").status_code == 404


def test_fix_validation_endpoint(client, loaded):
    loaded.workers[1]["MaxLoadPerPhase"] = 0

    response = client.post("/fix_validation", json={"entity_id": "W2", "error": "MaxLoadPerPhase must be at least 1"})

    assert response.status_code == 200
    assert response.json()["patch"]["updatedData"] == [{"WorkerID": "W2", "MaxLoadPerPhase": 1}]
    assert response.json()["errors"] == {}


def test_nl_modify_without_agent_is_503(client, loaded):
    response = client.post("/nl_modify", data={"command": "double durations"})

    assert response.status_code == 503


def test_nl_modify_bad_payload_is_502(client, loaded, make_agent):
    loaded.gpt_agent = make_agent("nothing useful")

    response = client.post("/nl_modify", data={"command": "double durations"})

    assert response.status_code == 502
    assert response.json()["status"] == "error"


def test_priorities_and_export(client, loaded):
    response = client.post("/priorities", json={"priorities": {"Fairness": 2, "LoadLimit": 2}})
    assert response.json()["priorities"] == {"Fairness": 0.5, "LoadLimit": 0.5}

    response = client.post("/export")
    assert response.status_code == 200
    names = [f["name"] for f in response.json()["files"]]
    assert names == ["clients.csv", "workers.csv", "tasks.csv", "rules.json", "priorities.json"]

    download = client.get("/download/rules.json")
    assert download.status_code == 200
    assert download.json() == []


def test_download_missing_file_is_404(client):
    assert client.get("/download/nope.csv").status_code == 404
