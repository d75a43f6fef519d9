"""
Deterministic Controller
========================
The single authority over campaign and task state.

The model only proposes. The controller reloads state from the store,
selects the next task, validates the model's proposal against the live tool
catalog, executes it through the registry, persists the outcome, and writes
an audit artifact. Nothing is cached between steps, so a restarted process
picks up exactly where the last committed write left off.

Task lifecycle:
    pending/retrying -> in_progress -> done
                                    -> retrying   (failure, budget remains)
                                    -> failed     (failure, budget exhausted)
"""

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from .agent.proposals import ActionProposal, ProposalGenerator
from .errors import (
    InvalidTransitionError, NotFoundError, ProposalValidationError, StaleTaskError,
)
from .mcp.registry import ToolRegistry
from .mcp.server import McpTool
from .models import (
    Artifact, ArtifactSource, ArtifactType, Campaign, CampaignState, CampaignStatus,
    Task, TaskStatus, utc_now,
)
from .notifications import LogNotifier, NotificationSink

log = logging.getLogger("outreach.controller")

ALLOWED_TRANSITIONS = {
    CampaignStatus.INITIALIZING: {CampaignStatus.ACTIVE},
    CampaignStatus.ACTIVE: {CampaignStatus.PAUSED, CampaignStatus.COMPLETED, CampaignStatus.ERROR},
    CampaignStatus.PAUSED: {CampaignStatus.ACTIVE},
}

TERMINAL_CAMPAIGN_STATUSES = (CampaignStatus.COMPLETED, CampaignStatus.ERROR)

DEFAULT_PROMPT = (
    "You are the planning component of an outreach campaign engine. "
    "Propose exactly one action that advances the current task. "
    "Only the tools listed below exist. Your proposal is validated before anything runs."
)

INTERRUPTED_ERROR = "interrupted by engine restart"

# Artifacts summarized in the task prompt, most recent first
PROMPT_ARTIFACT_LIMIT = 5
PROMPT_CONTENT_LIMIT = 500


def select_next_task(state: CampaignState) -> Optional[Task]:
    """
    Earliest-created runnable task of an active campaign.

    Pure: reads only the snapshot. Ties on created_at keep store order.
    """
    if state.campaign.status != CampaignStatus.ACTIVE:
        return None
    runnable = [t for t in state.tasks if t.is_runnable]
    if not runnable:
        return None
    return min(runnable, key=lambda t: t.created_at)


def record_failure(task: Task, error: str) -> Task:
    """Fold a failed attempt into the task's retry budget."""
    task.error = error
    if task.retry_count < task.max_retries:
        task.retry_count += 1
        task.status = TaskStatus.RETRYING
    else:
        task.status = TaskStatus.FAILED
        task.completed_at = utc_now()
    return task


def _describe(proposal: Any) -> Any:
    if isinstance(proposal, ActionProposal):
        return proposal.to_dict()
    return repr(proposal)


def build_task_prompt(state: CampaignState, task: Task, base_prompt: str = DEFAULT_PROMPT) -> str:
    lines = [
        base_prompt,
        "",
        f"Campaign: {state.campaign.name} ({state.campaign.id})",
        f"Target audience: {state.campaign.target_audience or 'unspecified'}",
        f"Current task: {task.id}",
        f"Description: {task.description}",
        f"Type: {task.task_type or 'unspecified'}",
        f"Attempt: {task.retry_count + 1} of {task.max_retries + 1}",
    ]
    if task.input is not None:
        lines.append(f"Input: {json.dumps(task.input, default=str)}")
    if task.error:
        lines.append(f"Previous attempt failed: {task.error}")

    recent = sorted(state.artifacts, key=lambda a: a.created_at, reverse=True)[:PROMPT_ARTIFACT_LIMIT]
    if recent:
        lines.append("")
        lines.append("Recent artifacts:")
        for artifact in recent:
            content = json.dumps(artifact.content, default=str)
            if len(content) > PROMPT_CONTENT_LIMIT:
                content = content[:PROMPT_CONTENT_LIMIT] + "..."
            lines.append(f"- [{artifact.artifact_type.value}] {artifact.key or artifact.id} "
                         f"v{artifact.version}: {content}")
    return "\n".join(lines)


class DeterministicController:
    """
    Drive one campaign step at a time.

    Usage:
        controller = DeterministicController(store, registry, generator)
        state = controller.reload_state(campaign_id)
        task = controller.select_next_task(state)
        if task:
            controller.execute_task(task.id)
    """

    def __init__(
        self,
        store,
        registry: ToolRegistry,
        generator: ProposalGenerator,
        notifier: Optional[NotificationSink] = None,
        proposal_attempts: int = 3,
        proposal_backoff: float = 2.0,
        prompt: str = DEFAULT_PROMPT,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.registry = registry
        self.generator = generator
        self.notifier = notifier or LogNotifier()
        self.proposal_attempts = max(1, proposal_attempts)
        self.proposal_backoff = proposal_backoff
        self.prompt = prompt
        self._sleep = sleep

    # -- State --

    def reload_state(self, campaign_id: str) -> CampaignState:
        campaign = self.store.campaigns.get_by_id(campaign_id)
        if campaign is None:
            raise NotFoundError("Campaign", campaign_id)
        return CampaignState(
            campaign=campaign,
            tasks=self.store.tasks.get_by_campaign_id(campaign_id),
            artifacts=self.store.artifacts.get_by_campaign_id(campaign_id),
            leads=self.store.leads.get_by_campaign_id(campaign_id),
        )

    def select_next_task(self, state: CampaignState) -> Optional[Task]:
        return select_next_task(state)

    # -- Execution --

    def execute_task(self, task_id: str) -> Task:
        """Run one execution step for a task. Never raises for tool or model failures."""
        task = self.store.tasks.get_by_id(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)

        state = self.reload_state(task.campaign_id)
        task = state.task(task_id) or task
        if not task.is_runnable:
            log.info(f"Task {task_id} is {task.status.value}, nothing to do")
            return task
        if state.campaign.status != CampaignStatus.ACTIVE:
            log.info(f"Campaign {state.campaign.id} is {state.campaign.status.value}, "
                     f"not executing task {task_id}")
            return task

        previous = task.status
        task.status = TaskStatus.IN_PROGRESS
        task.started_at = utc_now()
        try:
            self.store.tasks.update(task, expected_status=previous)
        except StaleTaskError as e:
            log.info(f"Task {task_id} was claimed elsewhere: {e}")
            return self.store.tasks.get_by_id(task_id) or task

        log.info(f"Executing task {task_id} (attempt {task.retry_count + 1})")

        try:
            tools = self.registry.discover_tools()
        except Exception as e:
            log.warning(f"Tool discovery failed for task {task_id}: {e}")
            return self._fail(task, "execution_error", f"Tool discovery failed: {e}", {})

        prompt = build_task_prompt(state, task, self.prompt)
        try:
            proposal = self._generate_proposal(self.reload_state(task.campaign_id), tools, prompt)
        except Exception as e:
            return self._fail(task, "proposal_error", f"Proposal generation failed: {e}", {})

        try:
            tool, params = self.validate_proposal(proposal, task, tools)
        except ProposalValidationError as e:
            log.warning(f"Rejected proposal for task {task_id}: {e}")
            return self._fail(task, "invalid_proposal", str(e), {"proposal": _describe(proposal)})

        if tool is None:
            return self._complete(task, params, "task_complete", {"output": params})

        try:
            result = self.registry.call_tool(tool.name, params)
        except Exception as e:
            log.warning(f"Tool {tool.name} failed for task {task_id}: {e}")
            return self._fail(task, "execution_error", str(e),
                              {"tool": tool.name, "parameters": params})

        return self._complete(task, result, tool.name,
                              {"tool": tool.name, "parameters": params, "result": result})

    def validate_proposal(self, proposal: ActionProposal, task: Task,
                          tools: List[McpTool]) -> Tuple[Optional[McpTool], Dict[str, Any]]:
        """
        Check a proposal against the live catalog.

        Returns (tool, params), with tool None for the task_complete sentinel.
        Raises ProposalValidationError; the tool is never invoked on rejection.
        """
        if not isinstance(proposal, ActionProposal):
            raise ProposalValidationError(
                f"Generator returned {type(proposal).__name__}, expected ActionProposal"
            )
        if not isinstance(proposal.action_type, str) or not proposal.action_type.strip():
            raise ProposalValidationError(f"Invalid action type: {proposal.action_type!r}")
        if proposal.task_id and proposal.task_id != task.id:
            raise ProposalValidationError(
                f"Proposal targets task {proposal.task_id}, executing {task.id}"
            )
        params = proposal.parameters_dict()
        if proposal.is_task_complete:
            return None, params

        tool = next((t for t in tools if t.name == proposal.action_type), None)
        if tool is None:
            raise ProposalValidationError(f"Unknown tool: {proposal.action_type}")
        if not self.registry.validate(tool, params):
            missing = self.registry.missing_parameters(tool, params)
            raise ProposalValidationError(
                f"Missing required parameters for {tool.name}: {', '.join(missing)}"
            )
        return tool, params

    def recover_interrupted(self, campaign_id: str) -> List[Task]:
        """Fold tasks left in_progress by a dead process back into retry accounting."""
        recovered = []
        for task in self.store.tasks.get_by_status(campaign_id, TaskStatus.IN_PROGRESS):
            record_failure(task, INTERRUPTED_ERROR)
            try:
                self.store.tasks.update(task, expected_status=TaskStatus.IN_PROGRESS)
            except StaleTaskError:
                continue
            self.create_audit_log(campaign_id, "interrupted", self._outcome(task))
            log.warning(f"Recovered interrupted task {task.id} -> {task.status.value}")
            recovered.append(task)
        return recovered

    # -- Campaigns --

    def transition_campaign_status(self, campaign_id: str, new_status: CampaignStatus) -> Campaign:
        campaign = self.store.campaigns.get_by_id(campaign_id)
        if campaign is None:
            raise NotFoundError("Campaign", campaign_id)

        new_status = CampaignStatus(new_status)
        if new_status not in ALLOWED_TRANSITIONS.get(campaign.status, set()):
            raise InvalidTransitionError(campaign.status, new_status)

        previous = campaign.status
        campaign.status = new_status
        if new_status in TERMINAL_CAMPAIGN_STATUSES:
            campaign.completed_at = utc_now()
        self.store.campaigns.update(campaign)
        log.info(f"Campaign {campaign_id}: {previous.value} -> {new_status.value}")
        try:
            self.notifier.campaign_status_changed(campaign_id, new_status.value)
        except Exception as e:
            log.warning(f"Status notification for campaign {campaign_id} failed: {e}")
        return campaign

    def create_audit_log(self, campaign_id: str, action: str, details: Dict[str, Any]) -> Artifact:
        now = datetime.now(timezone.utc)
        artifact = Artifact(
            campaign_id=campaign_id,
            artifact_type=ArtifactType.ARBITRARY,
            key=f"audit_log_{now.strftime('%Y%m%d%H%M%S%f')}",
            content={"action": action, "timestamp": now.isoformat(), "details": details},
            source=ArtifactSource.AGENT,
        )
        return self.store.artifacts.create(artifact)

    # -- Internals --

    def _generate_proposal(self, state: CampaignState, tools: List[McpTool],
                           prompt: str) -> ActionProposal:
        last_error: Optional[Exception] = None
        for attempt in range(self.proposal_attempts):
            try:
                return self.generator.generate_proposal(state, tools, prompt)
            except Exception as e:
                last_error = e
                log.warning(f"Proposal attempt {attempt + 1}/{self.proposal_attempts} failed: {e}")
                if attempt + 1 < self.proposal_attempts:
                    self._sleep(self.proposal_backoff * (2 ** attempt))
        raise last_error

    def _complete(self, task: Task, output: Any, action: str, details: Dict[str, Any]) -> Task:
        task.output = output
        task.status = TaskStatus.DONE
        task.error = None
        task.completed_at = utc_now()
        self.store.tasks.update(task)
        self.create_audit_log(task.campaign_id, action, {**self._outcome(task), **details})
        log.info(f"Task {task.id} done via {action}")
        return task

    def _fail(self, task: Task, action: str, error: str, details: Dict[str, Any]) -> Task:
        record_failure(task, error)
        self.store.tasks.update(task)
        self.create_audit_log(task.campaign_id, action, {**self._outcome(task), **details})
        log.info(f"Task {task.id} -> {task.status.value} ({action}: {error})")
        return task

    @staticmethod
    def _outcome(task: Task) -> Dict[str, Any]:
        return {
            "task_id": task.id,
            "status": task.status.value,
            "retry_count": task.retry_count,
            "error": task.error,
        }
