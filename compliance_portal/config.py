from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    app_name: str = 'Learnership Compliance'
    app_env: str = 'local'
    app_timezone: str = 'Africa/Johannesburg'
    database_url: str = 'sqlite:///./compliance.db'
    app_base_url: str = 'http://127.0.0.1:8000'
    db_slow_query_ms: int = 100
    metrics_slow_ms: int = 200
    feedback_due_day: int = 5
    feedback_edit_window_days: int = 7
    timesheet_edit_window_days: int = 3
    timesheet_retention_days: int = 90
    timesheet_upload_points: int = 15
    roster_batch_size: int = 8
    enable_scheduler: bool = True
    expire_timesheets_interval_minutes: int = 60


settings = Settings()
