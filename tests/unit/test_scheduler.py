"""
Unit tests for scheduler (clawdeploy/scheduler.py).

Tests APScheduler configuration of the periodic backup jobs.
"""

from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from clawdeploy import scheduler as scheduler_module


class TestSchedulerInitialization:
    """Test scheduler initialization."""

    def test_init_scheduler(self, mock_scheduler, settings):
        """Test the interval and catch-up jobs are registered."""
        result = scheduler_module.init_scheduler(settings, hours=6)

        assert result == mock_scheduler
        assert scheduler_module.scheduler == mock_scheduler
        assert scheduler_module.backup_settings == settings

        jobs = {c[1]['id']: c[1] for c in mock_scheduler.add_job.call_args_list}
        assert set(jobs) == {'backup_interval', 'backup_initial'}
        assert isinstance(jobs['backup_interval']['trigger'], IntervalTrigger)
        assert jobs['backup_interval']['trigger'].interval.total_seconds() == 6 * 3600
        assert isinstance(jobs['backup_initial']['trigger'], DateTrigger)

    def test_init_scheduler_job_defaults(self, mock_scheduler, settings):
        """Test one backup at a time with coalescing and UTC timezone."""
        with patch('clawdeploy.scheduler.BlockingScheduler') as mock_class:
            mock_class.return_value = mock_scheduler
            scheduler_module.init_scheduler(settings)

        call_kwargs = mock_class.call_args[1]
        assert call_kwargs['job_defaults'] == {
            'coalesce': True,
            'max_instances': 1,
            'misfire_grace_time': 300
        }
        assert call_kwargs['timezone'] == 'UTC'

    def test_init_scheduler_uses_settings_hours(self, mock_scheduler, settings):
        """Test the interval defaults to settings.backup_hours."""
        scheduler_module.init_scheduler(settings)

        trigger = mock_scheduler.add_job.call_args_list[0][1]['trigger']
        assert trigger.interval.total_seconds() == settings.backup_hours * 3600

    def test_init_scheduler_without_initial_backup(self, mock_scheduler, settings):
        """Test initial_delay=0 registers only the interval job."""
        scheduler_module.init_scheduler(settings, initial_delay=0)

        assert mock_scheduler.add_job.call_count == 1
        assert mock_scheduler.add_job.call_args[1]['id'] == 'backup_interval'

    def test_init_scheduler_only_once(self, mock_scheduler, settings):
        """Test scheduler is only initialized once."""
        result1 = scheduler_module.init_scheduler(settings)
        result2 = scheduler_module.init_scheduler(settings)

        assert result1 is result2
        assert mock_scheduler.add_job.call_count == 2

    def test_init_scheduler_rejects_negative_interval(self, mock_scheduler, settings):
        """Test a non-positive interval raises ValueError."""
        with pytest.raises(ValueError):
            scheduler_module.init_scheduler(settings, hours=-1)


class TestSchedulerLifecycle:
    """Test scheduler start/stop operations."""

    def test_start_scheduler(self, mock_scheduler, settings):
        """Test starting the scheduler."""
        scheduler_module.init_scheduler(settings)

        scheduler_module.start_scheduler()

        mock_scheduler.start.assert_called_once()

    def test_start_scheduler_not_initialized(self, mock_scheduler):
        """Test starting scheduler before initialization raises error."""
        with pytest.raises(RuntimeError, match="not initialized"):
            scheduler_module.start_scheduler()

    def test_stop_scheduler(self, mock_scheduler, settings):
        """Test stopping a running scheduler shuts it down and forgets it."""
        scheduler_module.init_scheduler(settings)
        mock_scheduler.running = True

        scheduler_module.stop_scheduler()

        mock_scheduler.shutdown.assert_called_once_with(wait=False)
        assert scheduler_module.scheduler is None

    def test_stop_scheduler_not_running(self, mock_scheduler, settings):
        """Test stopping scheduler when not running."""
        scheduler_module.init_scheduler(settings)

        scheduler_module.stop_scheduler()

        mock_scheduler.shutdown.assert_not_called()


class TestSchedulerQueries:
    """Test scheduler query functions."""

    def test_get_scheduled_jobs(self, mock_scheduler, settings):
        """Test getting list of scheduled jobs."""
        mock_job1 = MagicMock()
        mock_job1.id = 'backup_interval'
        mock_job1.name = 'Backup every 6h'
        mock_job1.next_run_time = datetime(2026, 1, 1, 6, 0, 0)
        mock_job1.trigger = 'interval[6:00:00]'

        mock_job2 = MagicMock()
        mock_job2.id = 'backup_initial'
        mock_job2.name = 'Backup after start'
        mock_job2.next_run_time = None
        mock_job2.trigger = 'date'

        scheduler_module.init_scheduler(settings)
        mock_scheduler.get_jobs.return_value = [mock_job1, mock_job2]

        result = scheduler_module.get_scheduled_jobs()

        assert len(result) == 2
        assert result[0]['id'] == 'backup_interval'
        assert result[0]['next_run'] == '2026-01-01T06:00:00'
        assert result[1]['next_run'] is None

    def test_get_scheduled_jobs_not_initialized(self, mock_scheduler):
        """Test getting jobs when scheduler not initialized."""
        assert scheduler_module.get_scheduled_jobs() == []


class TestExecuteBackupWrapper:
    """Test backup execution wrapper."""

    @patch('clawdeploy.scheduler.run_backup')
    def test_execute_backup_wrapper_success(self, mock_run_backup, mock_scheduler, settings):
        """Test wrapper runs a backup with the scheduler's settings."""
        scheduler_module.init_scheduler(settings)

        scheduler_module._execute_backup_wrapper()

        mock_run_backup.assert_called_once_with(settings)

    @patch('clawdeploy.scheduler.run_backup')
    def test_execute_backup_wrapper_handles_exception(self, mock_run_backup, mock_scheduler, settings, caplog):
        """Test a failing backup is logged and does not propagate."""
        scheduler_module.init_scheduler(settings)
        mock_run_backup.side_effect = Exception("Test error")

        scheduler_module._execute_backup_wrapper()

        assert 'Scheduled backup failed: Test error' in caplog.text
