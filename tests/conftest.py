"""
Campaign Gate - Test Configuration

Dynamic repo root discovery to support running tests from any location,
plus shared actors, campaigns and stores.
"""

import os
import subprocess
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict

import pytest
import pytest_asyncio


def discover_repo_root() -> Path:
    """
    Discover the repository root using multiple strategies.

    Priority:
    1. CAMPAIGNGATE_REPO_ROOT environment variable
    2. Git rev-parse --show-toplevel
    3. Path traversal from conftest.py location

    Raises:
        RuntimeError: If repo root cannot be discovered
    """
    env_root = os.environ.get("CAMPAIGNGATE_REPO_ROOT")
    if env_root:
        root = Path(env_root)
        if root.is_dir() and (root / "pyproject.toml").is_file():
            return root

    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            capture_output=True,
            text=True,
            check=True,
            cwd=Path(__file__).parent,
        )
        git_root = Path(result.stdout.strip())
        if git_root.is_dir() and (git_root / "pyproject.toml").is_file():
            return git_root
    except (subprocess.CalledProcessError, FileNotFoundError):
        pass

    current = Path(__file__).resolve().parent
    for _ in range(10):
        if (current / "pyproject.toml").is_file():
            return current
        parent = current.parent
        if parent == current:
            break
        current = parent

    raise RuntimeError(
        "Could not discover repo root. Set CAMPAIGNGATE_REPO_ROOT environment "
        "variable or ensure tests are run from within the repository."
    )


REPO_ROOT = discover_repo_root()

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


from campaigngate.core.config import Config  # noqa: E402
from campaigngate.core.engine import CampaignGate  # noqa: E402
from campaigngate.store import InMemoryDocumentStore  # noqa: E402


def user_doc(
    first: str,
    last: str,
    roles: Dict[str, bool],
    wrike_name: str = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Build a persisted users/{id} document."""
    doc = {
        "firstName": first,
        "lastName": last,
        "displayName": f"{first} {last}",
        "email": f"{first.lower()}.{last.lower()}@example.com",
        "wrikeName": wrike_name if wrike_name is not None else f"{first} {last}",
        "roles": roles,
        "permissions": {},
        "teams": [],
    }
    doc.update(extra)
    return doc


USERS = {
    "u-editor": user_doc("Erin", "Editor", {"editor": True}),
    "u-admin": user_doc("Ada", "Admin", {"admin": True}),
    "u-reviewer": user_doc("Rex", "Reviewer", {"reviewer": True}),
    "u-viewer": user_doc("Vic", "Viewer", {"viewer": True}),
    "u-bot": user_doc("Auto", "Bot", {"ai-system": True}),
    "u-mismatch": user_doc("Alex", "Smith", {"editor": True}, wrike_name="alex smith"),
    "u-suspended": user_doc("Sam", "Stopped", {"editor": True}, status="suspended"),
}


def future_iso(days: float = 30) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def past_iso(days: float = 1) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()


def campaign_doc(**overrides: Any) -> Dict[str, Any]:
    """A campaign that passes draft validation for u-editor."""
    doc = {
        "title": "Spring Launch",
        "description": "Seasonal launch campaign for the spring catalogue",
        "assignedTo": "u-editor",
        "dueDate": future_iso(30),
        "createdBy": "u-editor",
        "status": "draft",
        "budget": 5000,
        "tags": ["spring"],
    }
    doc.update(overrides)
    return doc


def period(date: str, *activities: Dict[str, Any]) -> Dict[str, Any]:
    return {"date": date, "activities": list(activities)}


def activity(activity_id: str, owner: str, status: str = "approved", **extra: Any) -> Dict[str, Any]:
    doc = {
        "activityId": activity_id,
        "channel": "Email",
        "ownerUid": owner,
        "status": status,
        "contentPacket": {"subjectLine": f"Subject {activity_id}"},
    }
    doc.update(extra)
    return doc


@pytest.fixture(scope="session")
def repo_root() -> Path:
    """Fixture providing the repository root path."""
    return REPO_ROOT


@pytest.fixture
def config() -> Config:
    """Create test configuration."""
    return Config()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    """Empty in-memory document store."""
    return InMemoryDocumentStore()


@pytest_asyncio.fixture
async def seeded_store(store: InMemoryDocumentStore) -> InMemoryDocumentStore:
    """Store with the standard users loaded."""
    for user_id, doc in USERS.items():
        await store.set("users", user_id, doc)
    return store


@pytest.fixture
def gate(config: Config, seeded_store: InMemoryDocumentStore) -> CampaignGate:
    """Campaign Gate over the seeded store."""
    return CampaignGate(config=config, store=seeded_store)


@pytest.fixture
def temp_sqlite_db(tmp_path) -> Path:
    """Fixture providing a temporary SQLite database path."""
    return tmp_path / "test_campaigngate.db"
