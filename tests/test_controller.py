"""Tests for the deterministic controller."""

import re
import sys
import pytest
from pathlib import Path
from unittest.mock import MagicMock

sys.path.insert(0, str(Path(__file__).parent.parent))

from engine_fakes import (
    FakeToolServer, ScriptedGenerator, make_store, proposal, search_tool, seed_campaign,
)


def _controller(store, generator, servers=None, **kwargs):
    from outreach_engine.controller import DeterministicController
    from outreach_engine.mcp.registry import ToolRegistry
    registry = ToolRegistry()
    for server in servers if servers is not None else [FakeToolServer("web", [search_tool()])]:
        registry.register(server)
    kwargs.setdefault("sleep", lambda seconds: None)
    return DeterministicController(store, registry, generator, **kwargs)


def _audit_actions(store, campaign_id):
    logs = [a for a in store.artifacts.get_by_campaign_id(campaign_id) if a.is_audit_log]
    return [a.content["action"] for a in logs]


# ============================================================
# State and selection
# ============================================================

class TestReloadAndSelect:
    def test_reload_is_idempotent(self, tmp_path):
        store = make_store(tmp_path)
        campaign, _ = seed_campaign(store, tasks=3)
        controller = _controller(store, ScriptedGenerator(proposal("task_complete")))
        first = controller.reload_state(campaign.id)
        second = controller.reload_state(campaign.id)
        assert first.to_dict() == second.to_dict()

    def test_reload_unknown_campaign(self, tmp_path):
        from outreach_engine.errors import NotFoundError
        controller = _controller(make_store(tmp_path), ScriptedGenerator(proposal("x")))
        with pytest.raises(NotFoundError):
            controller.reload_state("camp-missing")

    def test_select_earliest_runnable(self, tmp_path):
        from outreach_engine.controller import select_next_task
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        campaign, tasks = seed_campaign(store, tasks=3)
        tasks[0].status = TaskStatus.DONE
        store.tasks.update(tasks[0])
        tasks[2].status = TaskStatus.RETRYING
        store.tasks.update(tasks[2])

        controller = _controller(store, ScriptedGenerator(proposal("x")))
        state = controller.reload_state(campaign.id)
        assert select_next_task(state).id == tasks[1].id

    def test_select_includes_retrying(self, tmp_path):
        from outreach_engine.controller import select_next_task
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        campaign, tasks = seed_campaign(store, tasks=2)
        tasks[0].status = TaskStatus.RETRYING
        store.tasks.update(tasks[0])
        state = _controller(store, ScriptedGenerator(proposal("x"))).reload_state(campaign.id)
        assert select_next_task(state).id == tasks[0].id

    def test_select_is_pure_and_deterministic(self, tmp_path):
        from outreach_engine.controller import select_next_task
        store = make_store(tmp_path)
        campaign, _ = seed_campaign(store, tasks=3)
        state = _controller(store, ScriptedGenerator(proposal("x"))).reload_state(campaign.id)
        before = state.to_dict()
        picks = {select_next_task(state).id for _ in range(5)}
        assert len(picks) == 1
        assert state.to_dict() == before

    def test_select_tie_keeps_store_order(self, tmp_path):
        from outreach_engine.controller import select_next_task
        from outreach_engine.models import Campaign, CampaignState, CampaignStatus, Task
        campaign = Campaign(status=CampaignStatus.ACTIVE)
        same = "2025-01-01T00:00:00+00:00"
        tasks = [Task(id="task-b", created_at=same), Task(id="task-a", created_at=same)]
        assert select_next_task(CampaignState(campaign, tasks)).id == "task-b"

    def test_select_none_when_not_active(self, tmp_path):
        from outreach_engine.controller import select_next_task
        from outreach_engine.models import CampaignStatus
        store = make_store(tmp_path)
        for status in (CampaignStatus.INITIALIZING, CampaignStatus.PAUSED,
                       CampaignStatus.COMPLETED, CampaignStatus.ERROR):
            campaign, _ = seed_campaign(store, status=status)
            state = _controller(store, ScriptedGenerator(proposal("x"))).reload_state(campaign.id)
            assert select_next_task(state) is None

    def test_select_none_when_nothing_runnable(self, tmp_path):
        from outreach_engine.controller import select_next_task
        store = make_store(tmp_path)
        campaign, _ = seed_campaign(store, tasks=0)
        state = _controller(store, ScriptedGenerator(proposal("x"))).reload_state(campaign.id)
        assert select_next_task(state) is None


# ============================================================
# Execution
# ============================================================

class TestExecuteTask:
    def test_task_complete(self, tmp_path):
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        campaign, (task,) = seed_campaign(store)
        web = FakeToolServer("web", [search_tool()])
        controller = _controller(store, ScriptedGenerator(
            proposal("task_complete", {"summary": "already done"})), servers=[web])

        result = controller.execute_task(task.id)

        assert result.status == TaskStatus.DONE
        assert result.output == {"summary": "already done"}
        assert result.completed_at
        assert web.calls == []
        persisted = store.tasks.get_by_id(task.id)
        assert persisted.status == TaskStatus.DONE
        assert _audit_actions(store, campaign.id) == ["task_complete"]

    def test_task_complete_case_insensitive(self, tmp_path):
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        _, (task,) = seed_campaign(store)
        controller = _controller(store, ScriptedGenerator(proposal("Task_Complete")))
        assert controller.execute_task(task.id).status == TaskStatus.DONE

    def test_tool_success(self, tmp_path):
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        campaign, (task,) = seed_campaign(store)
        result_payload = {"content": [{"type": "text", "text": "3 leads"}]}
        web = FakeToolServer("web", [search_tool()], results={"search": result_payload})
        controller = _controller(store, ScriptedGenerator(
            proposal("search", {"query": "fintech CTO"})), servers=[web])

        result = controller.execute_task(task.id)

        assert result.status == TaskStatus.DONE
        assert result.output == result_payload
        assert web.calls == [("search", {"query": "fintech CTO"})]
        audits = [a for a in store.artifacts.get_by_campaign_id(campaign.id) if a.is_audit_log]
        assert [a.content["action"] for a in audits] == ["search"]
        assert audits[0].content["details"]["parameters"] == {"query": "fintech CTO"}

    def test_string_parameters_are_decoded(self, tmp_path):
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        _, (task,) = seed_campaign(store)
        web = FakeToolServer("web", [search_tool()])
        controller = _controller(store, ScriptedGenerator(
            proposal("search", '{"query": "cto"}')), servers=[web])
        assert controller.execute_task(task.id).status == TaskStatus.DONE
        assert web.calls == [("search", {"query": "cto"})]

    def test_unknown_tool_rejected(self, tmp_path):
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        campaign, (task,) = seed_campaign(store)
        web = FakeToolServer("web", [search_tool()])
        controller = _controller(store, ScriptedGenerator(proposal("send_email", {"to": "x"})),
                                 servers=[web])

        result = controller.execute_task(task.id)

        assert result.status == TaskStatus.RETRYING
        assert result.retry_count == 1
        assert "Unknown tool" in result.error
        assert web.calls == []
        audits = [a for a in store.artifacts.get_by_campaign_id(campaign.id) if a.is_audit_log]
        assert audits[0].content["action"] == "invalid_proposal"
        assert audits[0].content["details"]["proposal"]["action_type"] == "send_email"

    def test_tool_names_are_exact(self, tmp_path):
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        _, (task,) = seed_campaign(store)
        controller = _controller(store, ScriptedGenerator(proposal("SEARCH", {"query": "x"})))
        assert controller.execute_task(task.id).status == TaskStatus.RETRYING

    def test_missing_required_parameter(self, tmp_path):
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        campaign, (task,) = seed_campaign(store)
        web = FakeToolServer("web", [search_tool()])
        controller = _controller(store, ScriptedGenerator(proposal("search", {"q": "typo"})),
                                 servers=[web])
        result = controller.execute_task(task.id)
        assert result.status == TaskStatus.RETRYING
        assert "query" in result.error
        assert web.calls == []
        assert _audit_actions(store, campaign.id) == ["invalid_proposal"]

    def test_non_object_parameters_rejected(self, tmp_path):
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        _, (task,) = seed_campaign(store)
        controller = _controller(store, ScriptedGenerator(proposal("search", "[1, 2]")))
        result = controller.execute_task(task.id)
        assert result.status == TaskStatus.RETRYING
        assert "JSON object" in result.error

    def test_mismatched_task_id_rejected(self, tmp_path):
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        _, (task,) = seed_campaign(store)
        controller = _controller(store, ScriptedGenerator(
            proposal("task_complete", {}, task_id="task-other")))
        result = controller.execute_task(task.id)
        assert result.status == TaskStatus.RETRYING
        assert "task-other" in result.error

    def test_generator_returning_none_is_invalid(self, tmp_path):
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        campaign, (task,) = seed_campaign(store)
        web = FakeToolServer("web", [search_tool()])
        controller = _controller(store, ScriptedGenerator(None), servers=[web])

        result = controller.execute_task(task.id)

        assert result.status == TaskStatus.RETRYING
        assert result.retry_count == 1
        assert "NoneType" in result.error
        assert store.tasks.get_by_id(task.id).status == TaskStatus.RETRYING
        assert web.calls == []
        assert _audit_actions(store, campaign.id) == ["invalid_proposal"]

    @pytest.mark.parametrize("action_type", [123, None, "", "   "])
    def test_bad_action_type_is_invalid(self, tmp_path, action_type):
        from outreach_engine.agent.proposals import ActionProposal
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        campaign, (task,) = seed_campaign(store)
        controller = _controller(store, ScriptedGenerator(ActionProposal(action_type=action_type)))

        result = controller.execute_task(task.id)

        assert result.status == TaskStatus.RETRYING
        assert "action type" in result.error
        assert store.tasks.get_by_status(campaign.id, TaskStatus.IN_PROGRESS) == []
        assert _audit_actions(store, campaign.id) == ["invalid_proposal"]

    def test_required_fields_checked_through_registry(self, tmp_path):
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        _, (task,) = seed_campaign(store)
        web = FakeToolServer("web", [search_tool()])
        controller = _controller(store, ScriptedGenerator(proposal("search", {"query": "cto"})),
                                 servers=[web])
        controller.registry.validate = MagicMock(return_value=False)

        result = controller.execute_task(task.id)

        controller.registry.validate.assert_called_once()
        tool, params = controller.registry.validate.call_args.args
        assert tool.name == "search" and params == {"query": "cto"}
        assert result.status == TaskStatus.RETRYING
        assert "Missing required parameters for search" in result.error
        assert web.calls == []

    def test_tool_error(self, tmp_path):
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        campaign, (task,) = seed_campaign(store)
        web = FakeToolServer("web", [search_tool()], fail_tools=["search"])
        controller = _controller(store, ScriptedGenerator(proposal("search", {"query": "x"})),
                                 servers=[web])

        result = controller.execute_task(task.id)

        assert result.status == TaskStatus.RETRYING
        assert "boom" in result.error
        audits = [a for a in store.artifacts.get_by_campaign_id(campaign.id) if a.is_audit_log]
        assert audits[0].content["action"] == "execution_error"
        assert "boom" in audits[0].content["details"]["error"]

    def test_discovery_failure_is_execution_failure(self, tmp_path):
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        campaign, (task,) = seed_campaign(store)
        generator = ScriptedGenerator(proposal("task_complete"))
        dead = FakeToolServer("dead", [search_tool()], fail_listing=True)
        controller = _controller(store, generator, servers=[dead])

        result = controller.execute_task(task.id)

        assert result.status == TaskStatus.RETRYING
        assert generator.calls == []
        assert _audit_actions(store, campaign.id) == ["execution_error"]

    def test_retry_budget_exhausted(self, tmp_path):
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        campaign, (task,) = seed_campaign(store, max_retries=2)
        web = FakeToolServer("web", [search_tool()], fail_tools=["search"])
        controller = _controller(store, ScriptedGenerator(proposal("search", {"query": "x"})),
                                 servers=[web])

        statuses = [controller.execute_task(task.id).status for _ in range(3)]

        assert statuses == [TaskStatus.RETRYING, TaskStatus.RETRYING, TaskStatus.FAILED]
        final = store.tasks.get_by_id(task.id)
        assert final.retry_count == 2
        assert final.completed_at

        # Failed tasks are never resurrected
        assert controller.execute_task(task.id).status == TaskStatus.FAILED
        assert len(web.calls) == 3

    def test_retry_count_never_exceeds_max(self, tmp_path):
        store = make_store(tmp_path)
        _, (task,) = seed_campaign(store, max_retries=3)
        controller = _controller(store, ScriptedGenerator(proposal("nope")))
        for _ in range(10):
            result = controller.execute_task(task.id)
            assert result.retry_count <= result.max_retries

    def test_proposal_generation_retries_with_backoff(self, tmp_path):
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        _, (task,) = seed_campaign(store)
        sleeps = []
        generator = ScriptedGenerator(RuntimeError("rate limited"), RuntimeError("rate limited"),
                                      proposal("task_complete"))
        controller = _controller(store, generator, sleep=sleeps.append,
                                 proposal_attempts=3, proposal_backoff=2.0)

        assert controller.execute_task(task.id).status == TaskStatus.DONE
        assert len(generator.calls) == 3
        assert sleeps == [2.0, 4.0]

    def test_proposal_generation_exhausted(self, tmp_path):
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        campaign, (task,) = seed_campaign(store)
        generator = ScriptedGenerator(RuntimeError("model down"))
        controller = _controller(store, generator, proposal_attempts=3)

        result = controller.execute_task(task.id)

        assert result.status == TaskStatus.RETRYING
        assert "model down" in result.error
        assert len(generator.calls) == 3
        assert _audit_actions(store, campaign.id) == ["proposal_error"]

    def test_paused_campaign_is_noop(self, tmp_path):
        from outreach_engine.models import CampaignStatus, TaskStatus
        store = make_store(tmp_path)
        campaign, (task,) = seed_campaign(store, status=CampaignStatus.PAUSED)
        generator = ScriptedGenerator(proposal("task_complete"))
        controller = _controller(store, generator)

        result = controller.execute_task(task.id)

        assert result.status == TaskStatus.PENDING
        assert generator.calls == []
        assert store.artifacts.get_by_campaign_id(campaign.id) == []

    def test_done_task_is_noop(self, tmp_path):
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        campaign, (task,) = seed_campaign(store)
        controller = _controller(store, ScriptedGenerator(proposal("task_complete")))
        controller.execute_task(task.id)
        controller.execute_task(task.id)
        assert _audit_actions(store, campaign.id) == ["task_complete"]

    def test_unknown_task(self, tmp_path):
        from outreach_engine.errors import NotFoundError
        controller = _controller(make_store(tmp_path), ScriptedGenerator(proposal("x")))
        with pytest.raises(NotFoundError):
            controller.execute_task("task-missing")

    def test_lost_claim_is_noop(self, tmp_path):
        from outreach_engine.errors import StaleTaskError
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        _, (task,) = seed_campaign(store)
        generator = ScriptedGenerator(proposal("task_complete"))
        controller = _controller(store, generator)

        real_update = store.tasks.update

        def racing_update(t, expected_status=None):
            if expected_status is not None:
                raise StaleTaskError(t.id, expected_status, "in_progress")
            return real_update(t, expected_status)

        store.tasks.update = racing_update
        result = controller.execute_task(task.id)

        assert result.status == TaskStatus.PENDING
        assert generator.calls == []

    def test_single_in_progress_during_execution(self, tmp_path):
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        campaign, (task, _) = seed_campaign(store, tasks=2)
        observed = []

        class Observer(ScriptedGenerator):
            def generate_proposal(self, state, available_tools, prompt):
                in_progress = store.tasks.get_by_status(campaign.id, TaskStatus.IN_PROGRESS)
                observed.append([t.id for t in in_progress])
                return super().generate_proposal(state, available_tools, prompt)

        controller = _controller(store, Observer(proposal("task_complete")))
        controller.execute_task(task.id)

        assert observed == [[task.id]]
        assert store.tasks.get_by_status(campaign.id, TaskStatus.IN_PROGRESS) == []

    def test_audit_written_after_task_persisted(self, tmp_path):
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        _, (task,) = seed_campaign(store)
        controller = _controller(store, ScriptedGenerator(proposal("task_complete")))
        seen = []
        real_create = store.artifacts.create

        def create(artifact):
            seen.append(store.tasks.get_by_id(task.id).status)
            return real_create(artifact)

        store.artifacts.create = create
        controller.execute_task(task.id)
        assert seen == [TaskStatus.DONE]

    def test_prompt_carries_task_context(self, tmp_path):
        store = make_store(tmp_path)
        _, (task,) = seed_campaign(store)
        generator = ScriptedGenerator(RuntimeError("first"), proposal("task_complete"))
        controller = _controller(store, generator, proposal_attempts=1)

        controller.execute_task(task.id)  # fails, leaves error on task
        controller.execute_task(task.id)

        prompt = generator.calls[-1][2]
        assert task.id in prompt
        assert "Step 1" in prompt
        assert "Attempt: 2 of 4" in prompt
        assert "first" in prompt
        assert [t.name for t in generator.calls[-1][1]] == ["search"]

    def test_restart_round_trip(self, tmp_path):
        from outreach_engine.controller import select_next_task
        from outreach_engine.models import TaskStatus
        from outreach_engine.store import JsonStore
        store = make_store(tmp_path)
        campaign, (t1, t2, t3) = seed_campaign(store, tasks=3)
        controller = _controller(store, ScriptedGenerator(proposal("task_complete", {"n": 1})))
        controller.execute_task(t1.id)
        before = controller.reload_state(campaign.id).to_dict()

        reopened = JsonStore(str(tmp_path / "store"))
        restarted = _controller(reopened, ScriptedGenerator(proposal("task_complete")))
        state = restarted.reload_state(campaign.id)

        assert state.to_dict() == before
        assert len(state.tasks) == 3
        assert [t.status for t in state.tasks] == [
            TaskStatus.DONE, TaskStatus.PENDING, TaskStatus.PENDING]
        assert state.task(t1.id).output == {"n": 1}
        assert len(state.audit_logs()) == 1
        assert select_next_task(state).id == t2.id

    def test_concurrent_stores_execute_each_task_once(self, tmp_path):
        import threading
        from outreach_engine.models import TaskStatus
        from outreach_engine.store import JsonStore
        store = make_store(tmp_path)
        campaign, tasks = seed_campaign(store, tasks=5)
        generators = []
        errors = []

        def worker(task_id, barrier):
            generator = ScriptedGenerator(proposal("task_complete"))
            generators.append(generator)
            controller = _controller(JsonStore(str(tmp_path / "store")), generator)
            try:
                barrier.wait(timeout=5)
                controller.execute_task(task_id)
            except Exception as e:
                errors.append(e)

        for task in tasks:
            barrier = threading.Barrier(2)
            threads = [threading.Thread(target=worker, args=(task.id, barrier)) for _ in range(2)]
            for t in threads:
                t.start()
            for t in threads:
                t.join(timeout=10)

        assert errors == []
        assert sum(len(g.calls) for g in generators) == len(tasks)
        assert all(store.tasks.get_by_id(t.id).status == TaskStatus.DONE for t in tasks)
        assert _audit_actions(store, campaign.id) == ["task_complete"] * len(tasks)


# ============================================================
# Campaign lifecycle, audit, recovery
# ============================================================

class TestCampaignTransitions:
    @pytest.mark.parametrize("start,target", [
        ("initializing", "active"), ("active", "paused"), ("paused", "active"),
        ("active", "completed"), ("active", "error"),
    ])
    def test_legal(self, tmp_path, start, target):
        from outreach_engine.models import CampaignStatus
        store = make_store(tmp_path)
        campaign, _ = seed_campaign(store, status=CampaignStatus(start), tasks=0)
        notifier = MagicMock()
        controller = _controller(store, ScriptedGenerator(proposal("x")), notifier=notifier)

        updated = controller.transition_campaign_status(campaign.id, CampaignStatus(target))

        assert updated.status == CampaignStatus(target)
        assert store.campaigns.get_by_id(campaign.id).status == CampaignStatus(target)
        notifier.campaign_status_changed.assert_called_once_with(campaign.id, target)
        if target in ("completed", "error"):
            assert updated.completed_at
        else:
            assert updated.completed_at is None

    @pytest.mark.parametrize("start,target", [
        ("initializing", "paused"), ("initializing", "completed"), ("paused", "completed"),
        ("completed", "active"), ("error", "active"), ("active", "initializing"),
        ("active", "active"),
    ])
    def test_illegal(self, tmp_path, start, target):
        from outreach_engine.errors import InvalidTransitionError
        from outreach_engine.models import CampaignStatus
        store = make_store(tmp_path)
        campaign, _ = seed_campaign(store, status=CampaignStatus(start), tasks=0)
        controller = _controller(store, ScriptedGenerator(proposal("x")))
        before = store.campaigns.get_by_id(campaign.id).to_dict()

        with pytest.raises(InvalidTransitionError):
            controller.transition_campaign_status(campaign.id, CampaignStatus(target))
        assert store.campaigns.get_by_id(campaign.id).to_dict() == before

    def test_unknown_campaign(self, tmp_path):
        from outreach_engine.errors import NotFoundError
        from outreach_engine.models import CampaignStatus
        controller = _controller(make_store(tmp_path), ScriptedGenerator(proposal("x")))
        with pytest.raises(NotFoundError):
            controller.transition_campaign_status("camp-x", CampaignStatus.ACTIVE)

    def test_notifier_failure_does_not_undo_transition(self, tmp_path):
        from outreach_engine.models import CampaignStatus
        store = make_store(tmp_path)
        campaign, _ = seed_campaign(store, status=CampaignStatus.INITIALIZING, tasks=0)
        notifier = MagicMock()
        notifier.campaign_status_changed.side_effect = ConnectionError("webhook down")
        controller = _controller(store, ScriptedGenerator(proposal("x")), notifier=notifier)

        updated = controller.transition_campaign_status(campaign.id, CampaignStatus.ACTIVE)

        assert updated.status == CampaignStatus.ACTIVE
        assert store.campaigns.get_by_id(campaign.id).status == CampaignStatus.ACTIVE
        notifier.campaign_status_changed.assert_called_once_with(campaign.id, "active")


class TestAuditAndRecovery:
    def test_audit_log_shape(self, tmp_path):
        from outreach_engine.models import ArtifactSource, ArtifactType
        store = make_store(tmp_path)
        campaign, _ = seed_campaign(store, tasks=0)
        controller = _controller(store, ScriptedGenerator(proposal("x")))

        artifact = controller.create_audit_log(campaign.id, "manual_note", {"by": "ops"})

        assert artifact.artifact_type == ArtifactType.ARBITRARY
        assert artifact.source == ArtifactSource.AGENT
        assert re.fullmatch(r"audit_log_\d{20}", artifact.key)
        assert artifact.content["action"] == "manual_note"
        assert artifact.content["details"] == {"by": "ops"}
        assert artifact.content["timestamp"]
        assert store.artifacts.get_by_id(artifact.id).is_audit_log

    def test_recover_interrupted(self, tmp_path):
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        campaign, (stuck, fresh) = seed_campaign(store, tasks=2)
        stuck.status = TaskStatus.IN_PROGRESS
        store.tasks.update(stuck)
        controller = _controller(store, ScriptedGenerator(proposal("x")))

        recovered = controller.recover_interrupted(campaign.id)

        assert [t.id for t in recovered] == [stuck.id]
        persisted = store.tasks.get_by_id(stuck.id)
        assert persisted.status == TaskStatus.RETRYING
        assert persisted.retry_count == 1
        assert "restart" in persisted.error
        assert store.tasks.get_by_id(fresh.id).status == TaskStatus.PENDING
        assert _audit_actions(store, campaign.id) == ["interrupted"]

    def test_recover_exhausted_budget_fails(self, tmp_path):
        from outreach_engine.models import TaskStatus
        store = make_store(tmp_path)
        campaign, (stuck,) = seed_campaign(store, max_retries=0)
        stuck.status = TaskStatus.IN_PROGRESS
        store.tasks.update(stuck)
        controller = _controller(store, ScriptedGenerator(proposal("x")))
        controller.recover_interrupted(campaign.id)
        assert store.tasks.get_by_id(stuck.id).status == TaskStatus.FAILED
