import os
import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.pop("GITHUB_TOKEN", None)

from data_alchemist import config


class StubAgent:
    """Stands in for GPTAgent: returns canned responses and records prompts."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts = []

    def chat_completion(self, system_prompt: str, user_prompt: str) -> str:
        self.prompts.append(user_prompt)
        return self.responses.pop(0)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "GITHUB_TOKEN", None)
    monkeypatch.setattr(config, "UPLOAD_DIR", tmp_path / "uploads")
    monkeypatch.setattr(config, "EXPORT_DIR", tmp_path / "exports")
    yield


@pytest.fixture
def clients():
    return [
        {"ClientID": "C1", "ClientName": "Acme", "PriorityLevel": 3, "RequestedTaskIDs": "T1,T2", "AttributesJSON": "{}"},
        {"ClientID": "C2", "ClientName": "Globex", "PriorityLevel": 5, "RequestedTaskIDs": "T3", "AttributesJSON": "{}"},
    ]


@pytest.fixture
def workers():
    return [
        {"WorkerID": "W1", "WorkerName": "Ann", "Skills": "python, sql", "AvailableSlots": "[1,2]", "MaxLoadPerPhase": 2},
        {"WorkerID": "W2", "WorkerName": "Bo", "Skills": "design", "AvailableSlots": "[1]", "MaxLoadPerPhase": 1},
    ]


@pytest.fixture
def tasks():
    return [
        {"TaskID": "T1", "TaskName": "ETL", "Duration": 2, "RequiredSkills": "python", "PreferredPhases": "1-2", "MaxConcurrent": 1},
        {"TaskID": "T2", "TaskName": "Report", "Duration": 1, "RequiredSkills": "sql", "PreferredPhases": "[2]", "MaxConcurrent": 1},
        {"TaskID": "T3", "TaskName": "Mockups", "Duration": 3, "RequiredSkills": "design", "PreferredPhases": "3", "MaxConcurrent": 1},
    ]


@pytest.fixture
def make_agent():
    return StubAgent
