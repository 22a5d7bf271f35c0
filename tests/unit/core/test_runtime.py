"""Tests for the process-wide pipeline runtime."""

import pytest


class TestPipelineRuntime:
    @pytest.mark.asyncio
    async def test_start_seeds_default_schedules(self, make_runtime, test_settings):
        runtime = make_runtime()
        await runtime.start(run_scheduler=False)
        try:
            schedules = runtime.scheduler.get_schedules()
            assert runtime.started
            assert {s.pipeline_type for s in schedules} == set(test_settings.default_schedules)
            assert all(s.next_run_at for s in schedules)
        finally:
            await runtime.stop()

        assert not runtime.started
        assert runtime.github.closed

    @pytest.mark.asyncio
    async def test_seeding_is_skipped_when_schedules_exist(self, make_runtime):
        runtime = make_runtime()
        await runtime.scheduler.create_schedule(
            name="Nightly sitemap",
            pipeline_type="sitemap_generation",
            cron_expression="0 3 * * *",
        )
        await runtime.start(run_scheduler=False)
        try:
            assert len(runtime.scheduler.get_schedules()) == 1
        finally:
            await runtime.stop()

    @pytest.mark.asyncio
    async def test_scheduler_events_reach_notifications(self, make_runtime):
        runtime = make_runtime()
        await runtime.start(seed_defaults=False, run_scheduler=False)
        try:
            await runtime.scheduler.create_schedule(
                name="Hourly enrichment",
                pipeline_type="data_enrichment",
                cron_expression="0 * * * *",
            )
            await runtime.events.drain()
            assert len(runtime.notifications) == 1
        finally:
            await runtime.stop()

    @pytest.mark.asyncio
    async def test_start_without_seeding(self, make_runtime):
        runtime = make_runtime()
        await runtime.start(seed_defaults=False, run_scheduler=False)
        try:
            assert runtime.scheduler.get_schedules() == []
        finally:
            await runtime.stop()
