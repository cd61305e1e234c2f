from datetime import timedelta
from pathlib import Path
import sys


# Ensure imports work when running this file directly: `python scripts/init_db.py`.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from compliance_portal.core.time_provider import default_time_provider
from compliance_portal.db import Base, SessionLocal, engine
from compliance_portal.models import LearnerProfile, Role
from compliance_portal.services.timesheet_service import ensure_month_schedule


Base.metadata.create_all(bind=engine)

db = SessionLocal()
try:
    if not db.query(LearnerProfile).first():
        start = default_time_provider.today() - timedelta(days=120)
        learners = [
            LearnerProfile(full_name='Thandi Mokoena', email='thandi@example.com', role=Role.LEARNER.value, learnership_start_date=start),
            LearnerProfile(full_name='Sipho Dlamini', email='sipho@example.com', role=Role.LEARNER.value, learnership_start_date=start),
            LearnerProfile(full_name='Naledi Khumalo', email='naledi@example.com', role=Role.LEARNER.value, learnership_start_date=start),
        ]
        db.add_all(learners)
        db.commit()

        today = default_time_provider.today()
        for learner in learners:
            ensure_month_schedule(db, learner.id, today.month, today.year)
finally:
    db.close()

print('DB initialized with sample learners.')
