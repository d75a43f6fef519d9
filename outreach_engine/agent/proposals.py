"""
Action Proposals
================
The model's only output is an ActionProposal: which tool to run (or the
"task_complete" sentinel), for which task, with which parameters. The
controller decides whether to honor it.

LLMProposalGenerator turns a campaign snapshot and the live tool catalog into
a system prompt, asks the configured provider for a JSON reply, and parses it.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..errors import ProposalValidationError
from ..mcp.server import McpTool
from ..models import CampaignState, TaskStatus
from .providers.base import BaseLLMProvider

log = logging.getLogger("outreach.proposals")

TASK_COMPLETE = "task_complete"

USER_INSTRUCTION = (
    "Based on the current state and available tools, what action should we take next? "
    "Respond with a JSON ActionProposal."
)

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


@dataclass
class ActionProposal:
    action_type: str = ""
    task_id: Optional[str] = None
    parameters: Any = field(default_factory=dict)

    @property
    def is_task_complete(self) -> bool:
        return self.action_type.strip().lower() == TASK_COMPLETE

    def parameters_dict(self) -> Dict[str, Any]:
        """
        Decode parameters to a JSON object.

        Models send parameters either as an object or as a JSON-encoded
        string. Anything that does not end up as an object is rejected.
        """
        params = self.parameters
        if params is None:
            return {}
        if isinstance(params, str):
            if not params.strip():
                return {}
            try:
                params = json.loads(params)
            except json.JSONDecodeError as e:
                raise ProposalValidationError(f"Parameters are not valid JSON: {e}") from e
        if not isinstance(params, dict):
            raise ProposalValidationError(
                f"Parameters must be a JSON object, got {type(params).__name__}"
            )
        return params

    def to_dict(self) -> Dict[str, Any]:
        return {"action_type": self.action_type, "task_id": self.task_id,
                "parameters": self.parameters}

    @classmethod
    def from_dict(cls, data: dict) -> "ActionProposal":
        # ActionType, actionType and action_type are all seen in the wild
        normalized = {str(k).replace("_", "").lower(): v for k, v in data.items()}
        task_id = normalized.get("taskid")
        return cls(
            action_type=str(normalized.get("actiontype") or ""),
            task_id=str(task_id) if task_id else None,
            parameters=normalized.get("parameters", {}),
        )


def parse_proposal(text: str) -> ActionProposal:
    """Parse a model reply into a proposal. Tolerates code fences and surrounding prose."""
    if not text or not text.strip():
        raise ValueError("LLM returned empty response")

    candidate = text.strip()
    fenced = _FENCE.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError:
        start, end = candidate.find("{"), candidate.rfind("}")
        if start == -1 or end <= start:
            raise ValueError(f"No JSON object in LLM response: {text[:200]}")
        try:
            data = json.loads(candidate[start:end + 1])
        except json.JSONDecodeError as e:
            raise ValueError(f"Malformed JSON in LLM response: {e}") from e

    if not isinstance(data, dict):
        raise ValueError("Failed to deserialize ActionProposal from LLM response")

    proposal = ActionProposal.from_dict(data)
    if not proposal.action_type:
        raise ValueError("LLM response has no action type")
    return proposal


class ProposalGenerator(ABC):
    """Anything that can propose the next action for a campaign."""

    @abstractmethod
    def generate_proposal(self, state: CampaignState, available_tools: List[McpTool],
                          prompt: str) -> ActionProposal:
        pass


class LLMProposalGenerator(ProposalGenerator):
    """
    Proposal generator backed by any BaseLLMProvider.

    Usage:
        generator = LLMProposalGenerator(OpenAIProvider(api_key=..., model="gpt-4o"))
        proposal = generator.generate_proposal(state, tools, prompt)
    """

    def __init__(self, provider: BaseLLMProvider, temperature: float = 0.2,
                 max_tokens: int = 2048):
        self.provider = provider
        self.temperature = temperature
        self.max_tokens = max_tokens

    def generate_proposal(self, state: CampaignState, available_tools: List[McpTool],
                          prompt: str) -> ActionProposal:
        log.info(f"Generating action proposal for campaign {state.campaign.id} "
                 f"via {self.provider.name()}")
        messages = [
            {"role": "system", "content": build_system_prompt(state, available_tools, prompt)},
            {"role": "user", "content": USER_INSTRUCTION},
        ]
        response = self.provider.chat(
            messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            json_mode=True,
        )
        proposal = parse_proposal(response.text)
        log.info(f"LLM proposed action: {proposal.action_type} for task {proposal.task_id}")
        return proposal


def build_system_prompt(state: CampaignState, available_tools: List[McpTool],
                        base_prompt: str) -> str:
    campaign = state.campaign
    lines = [
        base_prompt,
        "",
        "## Current Campaign State",
        f"Campaign: {campaign.name}",
        f"Status: {campaign.status.value}",
        f"Target Audience: {campaign.target_audience}",
        f"Tasks: {len(state.tasks)} total",
        f"Artifacts: {len(state.artifacts)} stored",
        f"Leads: {len(state.leads)} discovered",
        "",
    ]

    current = next((t for t in state.tasks if t.status == TaskStatus.IN_PROGRESS), None)
    if current is not None:
        lines += [
            "## Next Task",
            f"ID: {current.id}",
            f"Description: {current.description}",
            f"Type: {current.task_type}",
        ]
        if current.input is not None:
            lines.append(f"Input: {json.dumps(current.input, default=str)}")
        lines.append("")

    lines += [
        "## Available MCP Tools",
        "You can use these tools to accomplish tasks. "
        "Choose tools dynamically based on what you need to do:",
        "",
    ]
    for tool in available_tools:
        lines.append(f"### {tool.name}")
        lines.append(f"Description: {tool.description}")
        if tool.input_schema:
            lines.append(f"Input Schema: {json.dumps(tool.input_schema)}")
        lines.append("")

    lines += [
        "## ActionProposal Schema",
        "Respond with JSON matching this structure:",
        "{",
        '  "ActionType": "<tool_name or task_complete>",',
        '  "TaskId": "<task id>",',
        '  "Parameters": {<arguments matching the tool input schema>}',
        "}",
        f'Use "{TASK_COMPLETE}" as ActionType when the task is already achieved; '
        "its Parameters become the task output.",
    ]
    return "\n".join(lines)
