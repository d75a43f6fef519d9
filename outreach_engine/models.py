"""
Engine Data Models
==================
Campaigns, tasks, artifacts, and leads as persisted by the store.

Tasks are the outcome record of an execution step: status, output and error
live on the task itself. Artifacts are append-only; new information is a new
row with a bumped version.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CampaignStatus(str, Enum):
    INITIALIZING = "initializing"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    BLOCKED = "blocked"
    RETRYING = "retrying"
    FAILED = "failed"


class ArtifactType(str, Enum):
    CONTEXT = "context"
    LEADS = "leads"
    MESSAGES = "messages"
    HEURISTICS = "heuristics"
    ENVIRONMENT = "environment"
    ARBITRARY = "arbitrary"


class ArtifactSource(str, Enum):
    USER = "user"
    AGENT = "agent"


class LeadStatus(str, Enum):
    NEW = "new"
    QUALIFIED = "qualified"
    PENDING_CONNECTION = "pending_connection"
    CONNECTED = "connected"
    MESSAGE_SENT = "message_sent"
    RESPONDED = "responded"
    DECLINED = "declined"
    ARCHIVED = "archived"


# Statuses from which a task may be picked up for execution
RUNNABLE_TASK_STATUSES = (TaskStatus.PENDING, TaskStatus.RETRYING)


@dataclass
class Campaign:
    id: str = ""
    name: str = ""
    status: CampaignStatus = CampaignStatus.INITIALIZING
    target_audience: str = ""
    working_directory: str = ""
    created_at: str = ""
    updated_at: str = ""
    completed_at: Optional[str] = None

    def __post_init__(self):
        if not self.id:
            self.id = f"camp-{uuid.uuid4().hex[:8]}"
        if not self.created_at:
            self.created_at = utc_now()
        if not self.updated_at:
            self.updated_at = self.created_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id, "name": self.name, "status": self.status.value,
            "target_audience": self.target_audience,
            "working_directory": self.working_directory,
            "created_at": self.created_at, "updated_at": self.updated_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Campaign":
        data = dict(data)
        if "status" in data:
            data["status"] = CampaignStatus(data["status"])
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class Task:
    id: str = ""
    campaign_id: str = ""
    description: str = ""
    task_type: str = ""
    status: TaskStatus = TaskStatus.PENDING
    input: Any = None
    output: Any = None
    retry_count: int = 0
    max_retries: int = 3
    error: Optional[str] = None
    created_at: str = ""
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    def __post_init__(self):
        if not self.id:
            self.id = f"task-{uuid.uuid4().hex[:8]}"
        if not self.created_at:
            self.created_at = utc_now()

    @property
    def is_runnable(self) -> bool:
        return self.status in RUNNABLE_TASK_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id, "campaign_id": self.campaign_id,
            "description": self.description, "task_type": self.task_type,
            "status": self.status.value, "input": self.input, "output": self.output,
            "retry_count": self.retry_count, "max_retries": self.max_retries,
            "error": self.error, "created_at": self.created_at,
            "started_at": self.started_at, "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        data = dict(data)
        if "status" in data:
            data["status"] = TaskStatus(data["status"])
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class Artifact:
    id: str = ""
    campaign_id: str = ""
    artifact_type: ArtifactType = ArtifactType.ARBITRARY
    key: Optional[str] = None
    content: Any = None
    source: ArtifactSource = ArtifactSource.AGENT
    version: int = 1
    created_at: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = f"art-{uuid.uuid4().hex[:8]}"
        if not self.created_at:
            self.created_at = utc_now()

    @property
    def is_audit_log(self) -> bool:
        return (self.artifact_type == ArtifactType.ARBITRARY
                and bool(self.key) and self.key.startswith("audit_log_"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id, "campaign_id": self.campaign_id,
            "artifact_type": self.artifact_type.value, "key": self.key,
            "content": self.content, "source": self.source.value,
            "version": self.version, "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Artifact":
        data = dict(data)
        if "artifact_type" in data:
            data["artifact_type"] = ArtifactType(data["artifact_type"])
        if "source" in data:
            data["source"] = ArtifactSource(data["source"])
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class Lead:
    id: str = ""
    campaign_id: str = ""
    full_name: str = ""
    profile_url: str = ""
    title: str = ""
    headline: str = ""
    location: str = ""
    weight_score: float = 0.0
    status: LeadStatus = LeadStatus.NEW
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = f"lead-{uuid.uuid4().hex[:8]}"
        if not self.created_at:
            self.created_at = utc_now()
        if not self.updated_at:
            self.updated_at = self.created_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id, "campaign_id": self.campaign_id,
            "full_name": self.full_name, "profile_url": self.profile_url,
            "title": self.title, "headline": self.headline, "location": self.location,
            "weight_score": self.weight_score, "status": self.status.value,
            "metadata": self.metadata,
            "created_at": self.created_at, "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Lead":
        data = dict(data)
        if "status" in data:
            data["status"] = LeadStatus(data["status"])
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class CampaignState:
    """Snapshot of one campaign as reloaded from the store. Never cached."""
    campaign: Campaign
    tasks: List[Task] = field(default_factory=list)
    artifacts: List[Artifact] = field(default_factory=list)
    leads: List[Lead] = field(default_factory=list)

    def task(self, task_id: str) -> Optional[Task]:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def audit_logs(self) -> List[Artifact]:
        return [a for a in self.artifacts if a.is_audit_log]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "campaign": self.campaign.to_dict(),
            "tasks": [t.to_dict() for t in self.tasks],
            "artifacts": [a.to_dict() for a in self.artifacts],
            "leads": [l.to_dict() for l in self.leads],
        }
