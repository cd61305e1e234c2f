import unittest
from unittest import mock

from sqlalchemy.exc import OperationalError

from compliance_portal import scheduler as scheduler_module
from compliance_portal.core.store_guard import SafeConflictError, StoreAccessError, store_access
from compliance_portal.metrics import run_timed_job, timed_service


class StoreGuardTests(unittest.TestCase):
    def test_store_failures_roll_back_and_surface_typed_error(self):
        db = mock.Mock()
        with self.assertLogs('compliance_portal.core.store_guard', level='ERROR'):
            with self.assertRaises(StoreAccessError) as ctx:
                with store_access(db, 'record_download', schedule_id=7):
                    raise OperationalError('UPDATE timesheet_submissions', {}, Exception('database is locked'))
        db.rollback.assert_called_once()
        self.assertEqual(ctx.exception.operation, 'record_download')
        self.assertIsInstance(ctx.exception.cause, OperationalError)

    def test_domain_errors_pass_through_untouched(self):
        db = mock.Mock()
        with self.assertRaises(SafeConflictError):
            with store_access(db, 'submit_feedback'):
                raise SafeConflictError('already submitted')
        db.rollback.assert_not_called()


class MetricsTests(unittest.TestCase):
    def test_timed_service_keeps_function_identity(self):
        @timed_service('sample', threshold_ms=0)
        def sample(value):
            """Doubles value."""
            return value * 2

        with self.assertLogs('compliance_portal.metrics', level='INFO'):
            self.assertEqual(sample(4), 8)
        self.assertEqual(sample.__name__, 'sample')
        self.assertEqual(sample.__doc__, 'Doubles value.')

    def test_run_timed_job_reraises_failures(self):
        def boom():
            raise RuntimeError('job exploded')

        with self.assertLogs('compliance_portal.metrics', level='INFO') as logs:
            with self.assertRaises(RuntimeError):
                run_timed_job('expire_timesheets', boom)
        self.assertTrue(any('job_failed name=expire_timesheets' in line for line in logs.output))


class SchedulerTests(unittest.TestCase):
    def test_disabled_scheduler_does_not_start(self):
        with mock.patch.object(scheduler_module.settings, 'enable_scheduler', False):
            scheduler_module.start_scheduler()
        self.assertFalse(scheduler_module.scheduler.running)

    def test_expire_job_runs_on_a_fresh_session(self):
        session = mock.Mock()
        with mock.patch.object(scheduler_module, 'SessionLocal', return_value=session), mock.patch.object(
            scheduler_module, 'mark_expired_timesheets', return_value=3
        ) as mark_expired:
            scheduler_module.expire_timesheets_job()
        mark_expired.assert_called_once_with(session)
        session.close.assert_called_once()


if __name__ == '__main__':
    unittest.main()
