"""Tests for manual start/stop/restart."""

import pytest

from github_explorer.core.history import InMemoryHistoryStore, RunStatus
from github_explorer.core.operations import (
    MANUAL_STOP_MESSAGE,
    PipelineAction,
    PipelineOperations,
)
from github_explorer.pipelines.registry import UnknownPipelineError

TYPES = ["github_sync", "entity_extraction"]


class TestPipelineOperations:
    @pytest.mark.asyncio
    async def test_start_opens_history_and_dispatches(self, dispatcher):
        history = InMemoryHistoryStore()
        ops = PipelineOperations(history, dispatcher, TYPES)

        result = await ops.start("github_sync", {"max_requests": 2})

        assert result.success is True
        assert result.action == PipelineAction.START
        run = await history.get(result.history_id)
        assert run.status == RunStatus.RUNNING
        assert dispatcher.dispatched == [
            {
                "pipeline_type": "github_sync",
                "history_id": result.history_id,
                "parameters": {"max_requests": 2},
            }
        ]

    @pytest.mark.asyncio
    async def test_dispatch_failure_fails_record(self, dispatcher):
        dispatcher.error = ConnectionError("down")
        history = InMemoryHistoryStore()
        ops = PipelineOperations(history, dispatcher, TYPES)

        result = await ops.start("github_sync")

        assert result.success is False
        run = await history.get(result.history_id)
        assert run.status == RunStatus.FAILED
        assert "down" in run.error_message

    @pytest.mark.asyncio
    async def test_unknown_type(self, dispatcher):
        ops = PipelineOperations(InMemoryHistoryStore(), dispatcher, TYPES)
        with pytest.raises(UnknownPipelineError):
            await ops.start("nope")
        with pytest.raises(UnknownPipelineError):
            await ops.stop("nope")

    @pytest.mark.asyncio
    async def test_stop_fails_running_records_of_type(self, dispatcher):
        history = InMemoryHistoryStore()
        ops = PipelineOperations(history, dispatcher, TYPES)
        sync_run = await history.start("github_sync")
        other_run = await history.start("entity_extraction")

        result = await ops.stop("github_sync")

        assert result.stopped_runs == [sync_run.id]
        stopped = await history.get(sync_run.id)
        assert stopped.status == RunStatus.FAILED
        assert stopped.error_message == MANUAL_STOP_MESSAGE
        assert (await history.get(other_run.id)).status == RunStatus.RUNNING

    @pytest.mark.asyncio
    async def test_restart_stops_then_starts(self, dispatcher):
        history = InMemoryHistoryStore()
        ops = PipelineOperations(history, dispatcher, TYPES)
        old = await history.start("entity_extraction")

        result = await ops.execute("restart", "entity_extraction")

        assert result.action == PipelineAction.RESTART
        assert result.stopped_runs == [old.id]
        assert result.history_id != old.id
        assert (await history.get(result.history_id)).status == RunStatus.RUNNING
