import sys

import httpx
from alembic.config import Config
from alembic.script import ScriptDirectory
from alembic.runtime.migration import MigrationContext
from sqlalchemy import text

from compliance_portal.config import settings
from compliance_portal.db import SessionLocal, engine
from compliance_portal.models import LearnerProfile, MonthlyComplianceSnapshot, TimesheetSubmission
from compliance_portal.scheduler import scheduler, start_scheduler, stop_scheduler


EXPECTED_SCHEDULER_JOBS = {
    'expire_timesheets',
}

GREEN = '\033[32m'
RED = '\033[31m'
RESET = '\033[0m'


def run_check(name, fn):
    try:
        message = fn() or ''
        suffix = f' - {message}' if message else ''
        print(f'{GREEN}PASS{RESET} {name}{suffix}')
        return True
    except Exception as exc:
        print(f'{RED}FAIL{RESET} {name} - {exc}')
        return False


def check_db_connectivity_and_write():
    with engine.begin() as conn:
        conn.execute(text('SELECT 1'))
        conn.execute(text('CREATE TABLE IF NOT EXISTS _healthcheck_probe (id INTEGER PRIMARY KEY, note TEXT)'))
        conn.execute(text("INSERT INTO _healthcheck_probe (note) VALUES ('probe')"))
        conn.execute(text("DELETE FROM _healthcheck_probe WHERE note='probe'"))
        conn.execute(text('DROP TABLE IF EXISTS _healthcheck_probe'))
    return 'connect + write ok'


def check_alembic_head():
    cfg = Config('alembic.ini')
    script = ScriptDirectory.from_config(cfg)
    heads = set(script.get_heads())
    if not heads:
        raise RuntimeError('No alembic heads found in repository')

    with engine.connect() as conn:
        current = MigrationContext.configure(conn).get_current_revision()

    if current is None:
        raise RuntimeError('No migration version in DB (run alembic upgrade head)')
    if current not in heads:
        raise RuntimeError(f'DB revision {current} is not at head {sorted(heads)}')
    return f'current={current}'


def check_required_env():
    required = {
        'DATABASE_URL': settings.database_url,
        'APP_TIMEZONE': settings.app_timezone,
        'APP_BASE_URL': settings.app_base_url,
    }
    missing = [key for key, value in required.items() if not str(value).strip()]
    if missing:
        raise RuntimeError(f'Missing env vars: {", ".join(missing)}')
    return 'all required vars present'


def check_api_health():
    res = httpx.get(f"{settings.app_base_url.rstrip('/')}/health", timeout=8)
    if res.status_code != 200:
        raise RuntimeError(f'HTTP {res.status_code} from /health')
    payload = res.json()
    if payload.get('status') != 'ok':
        raise RuntimeError(f'API responded not ok: {payload}')
    return 'GET /health ok'


def check_scheduler_jobs_registered():
    if not settings.enable_scheduler:
        return 'scheduler disabled by ENABLE_SCHEDULER'
    start_scheduler()
    try:
        registered = {job.id for job in scheduler.get_jobs()}
        missing = sorted(EXPECTED_SCHEDULER_JOBS - registered)
        if missing:
            raise RuntimeError(f'Missing jobs: {missing}')
        return f'jobs={sorted(registered)}'
    finally:
        stop_scheduler()


def check_compliance_tables_accessible():
    db = SessionLocal()
    try:
        learners = db.query(LearnerProfile).count()
        _ = db.query(TimesheetSubmission).limit(1).all()
        _ = db.query(MonthlyComplianceSnapshot).limit(1).all()
        return f'learners={learners}'
    finally:
        db.close()


def main():
    checks = [
        ('Database connectivity and write access', check_db_connectivity_and_write),
        ('Alembic migration status at head', check_alembic_head),
        ('Required environment variables present', check_required_env),
        ('API health endpoint reachable', check_api_health),
        ('Scheduler jobs registered', check_scheduler_jobs_registered),
        ('Compliance tables accessible', check_compliance_tables_accessible),
    ]

    all_ok = True
    for name, fn in checks:
        all_ok = run_check(name, fn) and all_ok

    if not all_ok:
        sys.exit(1)
    sys.exit(0)


if __name__ == '__main__':
    main()
