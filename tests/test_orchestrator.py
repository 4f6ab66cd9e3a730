import pytest

from dealflow.engine.models import CreateRequest, TransitionRequest
from dealflow.engine.orchestrator import MutationOrchestrator
from dealflow.engine.trace_logger import log_commit

from conftest import COMPANY_ID, FakeWriter, RecordingNotifier


def _request(to_stage="contacted"):
    return TransitionRequest("o1", "new_lead", to_stage, title="Jane - Lead")


@pytest.mark.asyncio
async def test_direct_commit_moves_and_notifies():
    writer, notifier = FakeWriter(), RecordingNotifier()
    result = await MutationOrchestrator(writer, notifier).commit_direct(_request(), "user-1")

    assert result.ok and result.stage_moved
    assert writer.calls == [("move_stage", "o1", "contacted", "user-1")]
    assert notifier.successes == [("Moved to Contacted", "Jane - Lead")]


@pytest.mark.asyncio
async def test_direct_commit_failure_reports_error_without_raising():
    writer, notifier = FakeWriter(), RecordingNotifier()
    writer.fail_move = True
    result = await MutationOrchestrator(writer, notifier).commit_direct(_request(), "user-1")

    assert not result.ok
    assert result.error == "network down"
    assert notifier.errors == [("Failed to move opportunity to Contacted", "network down")]
    assert notifier.successes == []


@pytest.mark.asyncio
async def test_confirmed_commit_moves_before_updating_fields():
    writer = FakeWriter()
    result = await MutationOrchestrator(writer, RecordingNotifier()).commit_confirmed(
        _request("won"), "user-1", {"actual_value": 5000.0},
    )

    assert [c[0] for c in writer.calls] == ["move_stage", "update_fields"]
    assert writer.calls[1] == ("update_fields", "o1", {"actual_value": 5000.0})
    assert result.ok and result.fields_updated and not result.partial


@pytest.mark.asyncio
async def test_confirmed_commit_skips_update_when_nothing_to_write():
    writer = FakeWriter()
    result = await MutationOrchestrator(writer, RecordingNotifier()).commit_confirmed(
        _request("won"), "user-1", {"actual_value": None, "lost_notes": ""},
    )
    assert writer.commands("update_fields") == []
    assert result.fields_updated is None


@pytest.mark.asyncio
async def test_failed_move_skips_field_update():
    writer = FakeWriter()
    writer.fail_move = True
    result = await MutationOrchestrator(writer, RecordingNotifier()).commit_confirmed(
        _request("lost"), "user-1", {"lost_reason": "Price"},
    )
    assert not result.ok
    assert writer.commands("update_fields") == []


@pytest.mark.asyncio
async def test_failed_field_update_leaves_stage_committed():
    writer, notifier = FakeWriter(), RecordingNotifier()
    writer.fail_update = True
    result = await MutationOrchestrator(writer, notifier).commit_confirmed(
        _request("lost"), "user-1", {"lost_reason": "Price"},
    )

    assert result.ok and result.stage_moved
    assert result.fields_updated is False
    assert result.partial
    assert notifier.successes == [("Moved to Lost", "Jane - Lead")]
    assert notifier.errors == [("Failed to save deal details", "update rejected")]


@pytest.mark.asyncio
async def test_refresh_runs_after_success_and_failure():
    refreshed = []

    async def refresh():
        refreshed.append(True)

    writer = FakeWriter()
    orchestrator = MutationOrchestrator(writer, RecordingNotifier(), refresh)
    await orchestrator.commit_direct(_request(), "user-1")
    writer.fail_move = True
    await orchestrator.commit_direct(_request(), "user-1")
    assert len(refreshed) == 2


@pytest.mark.asyncio
async def test_refresh_failure_does_not_mask_result():
    async def refresh():
        raise RuntimeError("cache gone")

    result = await MutationOrchestrator(FakeWriter(), RecordingNotifier(), refresh).commit_direct(_request(), None)
    assert result.ok


@pytest.mark.asyncio
async def test_create_commit():
    writer, notifier = FakeWriter(), RecordingNotifier()
    create = CreateRequest(COMPANY_ID, "Jane - Lead", "Jane", "new_lead", estimated_value=100.0)
    result = await MutationOrchestrator(writer, notifier).commit_create(create, "user-1")

    assert result.ok and result.opportunity_id == "new-opp-1"
    assert writer.calls[0][1]["title"] == "Jane - Lead"
    assert notifier.successes == [("Lead added", "Jane - Lead")]

    writer.fail_create = True
    result = await MutationOrchestrator(writer, notifier).commit_create(create, "user-1")
    assert not result.ok
    assert notifier.errors == [("Failed to add lead", "insert failed")]


def test_commit_trace_record_shape():
    record = log_commit(
        action="move_stage_confirmed",
        opportunity_id="o1",
        actor_id="user-1",
        ok=True,
        from_stage="quote_sent",
        to_stage="won",
        fields={"actual_value": 5000.0},
    )
    assert record["type"] == "pipeline_commit"
    assert record["transition"] == {"from": "quote_sent", "to": "won"}
    assert record["fields"] == ["actual_value"]
    assert "error" not in record
