"""Tests for the periodic maintenance scheduler."""

import logging
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from ar_wizard.memory.manager import MaintenanceReport
from ar_wizard.memory.scheduler import _scheduled_maintenance_job, start_scheduler, stop_scheduler


class TestScheduler:
    async def test_start_stop_with_cron(self, mock_settings: Any) -> None:
        import ar_wizard.memory.scheduler as sched_mod

        mock_settings.maintenance_schedule_cron = "*/15 * * * *"
        start_scheduler(MagicMock())
        assert sched_mod._scheduler is not None
        job = sched_mod._scheduler.get_job("knowledge_maintenance")
        assert job is not None
        stop_scheduler()
        assert sched_mod._scheduler is None

    async def test_start_without_cron_is_noop(self, mock_settings: Any) -> None:
        import ar_wizard.memory.scheduler as sched_mod

        # Ensure clean state
        stop_scheduler()
        mock_settings.maintenance_schedule_cron = ""
        start_scheduler(MagicMock())
        assert sched_mod._scheduler is None


class TestMaintenanceJob:
    async def test_runs_scheduled_maintenance(self) -> None:
        store = MagicMock()
        store.perform_maintenance = AsyncMock(return_value=MaintenanceReport(started_at="2026-03-02T09:00:00+00:00"))

        await _scheduled_maintenance_job(store)

        store.perform_maintenance.assert_awaited_once_with(trigger="scheduled")

    async def test_reports_partial_failure(self, caplog: pytest.LogCaptureFixture) -> None:
        store = MagicMock()
        store.perform_maintenance = AsyncMock(
            return_value=MaintenanceReport(started_at="2026-03-02T09:00:00+00:00", errors=["sweep: locked"])
        )

        with caplog.at_level(logging.WARNING, logger="ar_wizard.memory.scheduler"):
            await _scheduled_maintenance_job(store)

        assert "sweep: locked" in caplog.text

    async def test_job_never_raises(self, caplog: pytest.LogCaptureFixture) -> None:
        store = MagicMock()
        store.perform_maintenance = AsyncMock(side_effect=RuntimeError("boom"))

        with caplog.at_level(logging.ERROR, logger="ar_wizard.memory.scheduler"):
            await _scheduled_maintenance_job(store)

        assert "Scheduled maintenance failed" in caplog.text
