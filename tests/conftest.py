"""Shared fixtures for taskmaster-sync tests."""

import json
from unittest.mock import AsyncMock

import pytest

from taskmaster_sync.storage.sqlite import SQLiteSyncStore
from taskmaster_sync.webhooks.signature import sign

GITHUB_SECRET = "github-test-secret"
GITLAB_SECRET = "gitlab-test-secret"


@pytest.fixture
def temp_db(tmp_path):
    """Path of a temporary SQLite database."""
    return str(tmp_path / "taskmaster_sync.db")


@pytest.fixture
def store(temp_db):
    return SQLiteSyncStore(temp_db)


@pytest.fixture
def queue():
    """Queue double whose enqueue returns the arq job id."""
    queue = AsyncMock()
    queue.enqueue = AsyncMock(side_effect=lambda job: f"sync:{job.sync_history_id}")
    queue.ping = AsyncMock(return_value=True)
    return queue


@pytest.fixture
def secrets():
    return {"github": GITHUB_SECRET, "gitlab": GITLAB_SECRET}


@pytest.fixture
def github_push_payload():
    """Factory for GitHub push payloads."""

    def _make(paths=(".taskmaster/tasks/tasks.json",), full_name="acme/widgets", description="Widgets"):
        owner, name = full_name.split("/", 1)
        return {
            "ref": "refs/heads/main",
            "before": "0" * 40,
            "after": "a1b2c3" + "0" * 34,
            "repository": {
                "id": 1296269,
                "name": name,
                "full_name": full_name,
                "html_url": f"https://github.com/{full_name}",
                "owner": {"login": owner, "id": 42},
                "default_branch": "main",
                "description": description,
            },
            "commits": [
                {
                    "id": "a1b2c3" + "0" * 34,
                    "message": "Update tasks",
                    "author": {"name": "Ada", "email": "ada@example.com"},
                    "timestamp": "2024-01-01T00:00:00Z",
                    "added": [],
                    "modified": list(paths),
                    "removed": [],
                }
            ],
        }

    return _make


@pytest.fixture
def gitlab_push_payload():
    """Factory for GitLab push payloads."""

    def _make(paths=(".taskmaster/tasks/tasks.json",), path_with_namespace="acme/widgets"):
        namespace, name = path_with_namespace.split("/", 1)
        return {
            "object_kind": "push",
            "ref": "refs/heads/main",
            "before": "0" * 40,
            "after": "f" * 40,
            "project": {
                "id": 15,
                "name": name,
                "path_with_namespace": path_with_namespace,
                "web_url": f"https://gitlab.com/{path_with_namespace}",
                "namespace": namespace,
                "default_branch": "main",
                "description": None,
            },
            "commits": [
                {
                    "id": "f" * 40,
                    "message": "Update tasks",
                    "author": {"name": "Grace", "email": "grace@example.com"},
                    "timestamp": "2024-01-01T00:00:00Z",
                    "added": list(paths),
                    "modified": [],
                    "removed": [],
                }
            ],
        }

    return _make


@pytest.fixture
def github_request():
    """Encode a payload and build signed GitHub headers for it."""

    def _make(payload, event="push", secret=GITHUB_SECRET, **extra_headers):
        body = json.dumps(payload).encode("utf-8")
        headers = {
            "X-GitHub-Event": event,
            "X-GitHub-Delivery": "72d3162e-cc78-11e3-81ab-4c9367dc0958",
            "X-Hub-Signature-256": sign(body, secret),
            "Content-Type": "application/json",
        }
        headers.update(extra_headers)
        return headers, body

    return _make


@pytest.fixture
def gitlab_request():
    """Encode a payload and build GitLab headers carrying the secret token."""

    def _make(payload, event="Push Hook", token=GITLAB_SECRET):
        body = json.dumps(payload).encode("utf-8")
        headers = {
            "X-Gitlab-Event": event,
            "X-Gitlab-Token": token,
            "X-Gitlab-Event-UUID": "13792a34-cac6-4fda-95a8-c58e00a3954e",
            "Content-Type": "application/json",
        }
        return headers, body

    return _make
