"""
Engine Store
============
Repository contracts consumed by the controller, plus a JSON-file store that
implements them.

Storage layout:
    <root>/
        campaigns.json
        tasks.json
        artifacts.json
        leads.json

Every read goes to disk, so a fresh process (or a fresh controller) sees
exactly what the previous one committed. Writes replace the file atomically.
Read-modify-write cycles hold an exclusive lock on a hidden `.<table>.lock`
file beside each table, so several processes can share one root (POSIX only).
"""

import fcntl
import json
import logging
import os
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, List, Optional, Type

from .errors import NotFoundError, StaleTaskError, StoreError
from .models import (
    Artifact, ArtifactType, Campaign, CampaignStatus, Lead, LeadStatus, Task,
    TaskStatus, utc_now,
)

log = logging.getLogger("outreach.store")

_DEFAULT_ROOT = Path.home() / ".outreach-engine" / "store"


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------

class CampaignRepository(ABC):

    @abstractmethod
    def get_by_id(self, campaign_id: str) -> Optional[Campaign]: ...

    @abstractmethod
    def get_all(self) -> List[Campaign]: ...

    @abstractmethod
    def get_by_status(self, status: CampaignStatus) -> List[Campaign]: ...

    @abstractmethod
    def create(self, campaign: Campaign) -> Campaign: ...

    @abstractmethod
    def update(self, campaign: Campaign) -> Campaign: ...

    @abstractmethod
    def delete(self, campaign_id: str) -> bool: ...


class TaskRepository(ABC):

    @abstractmethod
    def get_by_id(self, task_id: str) -> Optional[Task]: ...

    @abstractmethod
    def get_by_campaign_id(self, campaign_id: str) -> List[Task]: ...

    @abstractmethod
    def get_by_status(self, campaign_id: str, status: TaskStatus) -> List[Task]: ...

    @abstractmethod
    def create(self, task: Task) -> Task: ...

    @abstractmethod
    def update(self, task: Task, expected_status: Optional[TaskStatus] = None) -> Task:
        """
        Persist a task.

        When expected_status is given the write only happens if the stored
        task still has that status; otherwise StaleTaskError is raised.
        """

    @abstractmethod
    def delete(self, task_id: str) -> bool: ...


class ArtifactRepository(ABC):
    """Append-only. There is no update: a change is a new version."""

    @abstractmethod
    def get_by_id(self, artifact_id: str) -> Optional[Artifact]: ...

    @abstractmethod
    def get_by_campaign_id(self, campaign_id: str) -> List[Artifact]: ...

    @abstractmethod
    def get_by_type(self, campaign_id: str, artifact_type: ArtifactType) -> List[Artifact]: ...

    @abstractmethod
    def get_by_key(self, campaign_id: str, artifact_type: ArtifactType,
                   key: str) -> Optional[Artifact]:
        """Latest version for (campaign, type, key)."""

    @abstractmethod
    def create(self, artifact: Artifact) -> Artifact: ...


class LeadRepository(ABC):

    @abstractmethod
    def get_by_id(self, lead_id: str) -> Optional[Lead]: ...

    @abstractmethod
    def get_by_campaign_id(self, campaign_id: str) -> List[Lead]: ...

    @abstractmethod
    def get_by_status(self, campaign_id: str, status: LeadStatus) -> List[Lead]: ...

    @abstractmethod
    def get_top_leads(self, campaign_id: str, count: int) -> List[Lead]: ...

    @abstractmethod
    def create(self, lead: Lead) -> Lead: ...

    @abstractmethod
    def update(self, lead: Lead) -> Lead: ...

    @abstractmethod
    def delete(self, lead_id: str) -> bool: ...


# ---------------------------------------------------------------------------
# JSON implementation
# ---------------------------------------------------------------------------

class _FileLock:
    """Exclusive ``flock`` on a sidecar file, shared by every process using the store.

    Each acquire opens its own descriptor, so two ``JsonStore`` instances in
    one process exclude each other too.
    """

    def __init__(self, path: Path, timeout: float = 10.0):
        self.path = path
        self.timeout = timeout
        self._fd: Optional[int] = None

    def acquire(self):
        try:
            fd = os.open(str(self.path), os.O_CREAT | os.O_RDWR, 0o644)
        except OSError as e:
            raise StoreError(f"Failed to open lock file {self.path}: {e}") from e
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                self._fd = fd
                return
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    os.close(fd)
                    raise StoreError(f"Timed out after {self.timeout}s waiting for {self.path}")
                time.sleep(0.01)

    def release(self):
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None


class _JsonTable:
    """One JSON file holding a list of rows, in insertion order."""

    def __init__(self, path: Path, model: Type):
        self.path = path
        self.model = model
        self._thread_lock = threading.RLock()
        self._file_lock = _FileLock(path.with_name(f".{path.name}.lock"))
        self._depth = 0

    @contextmanager
    def locked(self):
        """Hold the table for a read-modify-write. Reentrant within a thread."""
        with self._thread_lock:
            if self._depth == 0:
                self._file_lock.acquire()
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
                if self._depth == 0:
                    self._file_lock.release()

    def read(self) -> List[dict]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Failed to read {self.path}: {e}") from e
        if not isinstance(data, list):
            raise StoreError(f"Corrupt table {self.path}: expected a list")
        return data

    def write(self, rows: List[dict]):
        try:
            fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix=f".{self.path.name}.")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(rows, f, indent=2, default=str)
            os.replace(tmp, self.path)
        except OSError as e:
            raise StoreError(f"Failed to write {self.path}: {e}") from e

    def load_all(self) -> list:
        return [self.model.from_dict(row) for row in self.read()]

    def find(self, predicate: Callable[[dict], bool]) -> list:
        return [self.model.from_dict(row) for row in self.read() if predicate(row)]

    def get(self, row_id: str):
        for row in self.read():
            if row.get("id") == row_id:
                return self.model.from_dict(row)
        return None

    def insert(self, entity):
        with self.locked():
            rows = self.read()
            if any(row.get("id") == entity.id for row in rows):
                raise StoreError(f"{self.model.__name__} '{entity.id}' already exists")
            rows.append(entity.to_dict())
            self.write(rows)
        return entity

    def replace(self, entity, check: Optional[Callable[[dict], None]] = None):
        with self.locked():
            rows = self.read()
            for i, row in enumerate(rows):
                if row.get("id") == entity.id:
                    if check:
                        check(row)
                    rows[i] = entity.to_dict()
                    self.write(rows)
                    return entity
        raise NotFoundError(self.model.__name__, entity.id)

    def remove(self, row_id: str) -> bool:
        with self.locked():
            rows = self.read()
            kept = [row for row in rows if row.get("id") != row_id]
            if len(kept) == len(rows):
                return False
            self.write(kept)
            return True


class JsonCampaignRepository(CampaignRepository):

    def __init__(self, table: _JsonTable):
        self._table = table

    def get_by_id(self, campaign_id: str) -> Optional[Campaign]:
        return self._table.get(campaign_id)

    def get_all(self) -> List[Campaign]:
        return self._table.load_all()

    def get_by_status(self, status: CampaignStatus) -> List[Campaign]:
        return self._table.find(lambda row: row.get("status") == status.value)

    def create(self, campaign: Campaign) -> Campaign:
        return self._table.insert(campaign)

    def update(self, campaign: Campaign) -> Campaign:
        campaign.updated_at = utc_now()
        return self._table.replace(campaign)

    def delete(self, campaign_id: str) -> bool:
        return self._table.remove(campaign_id)


class JsonTaskRepository(TaskRepository):

    def __init__(self, table: _JsonTable):
        self._table = table

    def get_by_id(self, task_id: str) -> Optional[Task]:
        return self._table.get(task_id)

    def get_by_campaign_id(self, campaign_id: str) -> List[Task]:
        return self._table.find(lambda row: row.get("campaign_id") == campaign_id)

    def get_by_status(self, campaign_id: str, status: TaskStatus) -> List[Task]:
        return self._table.find(
            lambda row: row.get("campaign_id") == campaign_id and row.get("status") == status.value
        )

    def create(self, task: Task) -> Task:
        return self._table.insert(task)

    def update(self, task: Task, expected_status: Optional[TaskStatus] = None) -> Task:
        check = None
        if expected_status is not None:
            def check(row: dict):
                if row.get("status") != expected_status.value:
                    raise StaleTaskError(task.id, expected_status, row.get("status"))
        return self._table.replace(task, check)

    def delete(self, task_id: str) -> bool:
        return self._table.remove(task_id)


class JsonArtifactRepository(ArtifactRepository):

    def __init__(self, table: _JsonTable):
        self._table = table

    def get_by_id(self, artifact_id: str) -> Optional[Artifact]:
        return self._table.get(artifact_id)

    def get_by_campaign_id(self, campaign_id: str) -> List[Artifact]:
        return self._table.find(lambda row: row.get("campaign_id") == campaign_id)

    def get_by_type(self, campaign_id: str, artifact_type: ArtifactType) -> List[Artifact]:
        return self._table.find(
            lambda row: (row.get("campaign_id") == campaign_id
                         and row.get("artifact_type") == artifact_type.value)
        )

    def get_by_key(self, campaign_id: str, artifact_type: ArtifactType,
                   key: str) -> Optional[Artifact]:
        matches = [a for a in self.get_by_type(campaign_id, artifact_type) if a.key == key]
        if not matches:
            return None
        return max(matches, key=lambda a: a.version)

    def create(self, artifact: Artifact) -> Artifact:
        with self._table.locked():
            if artifact.key:
                latest = self.get_by_key(artifact.campaign_id, artifact.artifact_type, artifact.key)
                artifact.version = latest.version + 1 if latest else 1
            return self._table.insert(artifact)


class JsonLeadRepository(LeadRepository):

    def __init__(self, table: _JsonTable):
        self._table = table

    def get_by_id(self, lead_id: str) -> Optional[Lead]:
        return self._table.get(lead_id)

    def get_by_campaign_id(self, campaign_id: str) -> List[Lead]:
        return self._table.find(lambda row: row.get("campaign_id") == campaign_id)

    def get_by_status(self, campaign_id: str, status: LeadStatus) -> List[Lead]:
        return self._table.find(
            lambda row: row.get("campaign_id") == campaign_id and row.get("status") == status.value
        )

    def get_top_leads(self, campaign_id: str, count: int) -> List[Lead]:
        leads = self.get_by_campaign_id(campaign_id)
        leads.sort(key=lambda ld: ld.weight_score, reverse=True)
        return leads[:count]

    def create(self, lead: Lead) -> Lead:
        return self._table.insert(lead)

    def update(self, lead: Lead) -> Lead:
        lead.updated_at = utc_now()
        return self._table.replace(lead)

    def delete(self, lead_id: str) -> bool:
        return self._table.remove(lead_id)


class JsonStore:
    """
    File-backed store exposing the four repositories.

    Usage:
        store = JsonStore("/var/lib/outreach")
        store.campaigns.create(Campaign(name="Q3 founders"))
        store.tasks.get_by_campaign_id(campaign.id)
    """

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root).expanduser() if root else _DEFAULT_ROOT
        self.root.mkdir(parents=True, exist_ok=True)

        self.campaigns = JsonCampaignRepository(_JsonTable(self.root / "campaigns.json", Campaign))
        self.tasks = JsonTaskRepository(_JsonTable(self.root / "tasks.json", Task))
        self.artifacts = JsonArtifactRepository(_JsonTable(self.root / "artifacts.json", Artifact))
        self.leads = JsonLeadRepository(_JsonTable(self.root / "leads.json", Lead))

        log.info(f"JsonStore at {self.root}")

    def repositories(self) -> Dict[str, object]:
        return {
            "campaigns": self.campaigns, "tasks": self.tasks,
            "artifacts": self.artifacts, "leads": self.leads,
        }
