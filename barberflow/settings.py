import os
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

@dataclass(frozen=True)
class Settings:
    app_base_url: str
    jwt_secret: str
    jwt_expire_minutes: int
    database_url: str
    timezone: str
    evolution_api_url: str
    evolution_api_key: str
    reminder_window_start: int
    reminder_window_end: int
    reminder_interval_minutes: int
    reminder_scheduler_enabled: bool
    log_level: str

    def local_now(self) -> datetime:
        # appointment date/time columns are shop-local and naive
        return datetime.now(ZoneInfo(self.timezone)).replace(tzinfo=None)

def _flag(s: str) -> bool:
    return s.strip().lower() in ('1', 'true', 'yes', 'on')

def load_settings() -> Settings:
    return Settings(
        app_base_url=os.getenv('APP_BASE_URL', 'http://localhost:8000'),
        jwt_secret=os.getenv('JWT_SECRET', 'change-me'),
        jwt_expire_minutes=int(os.getenv('JWT_EXPIRE_MINUTES', '43200')),
        database_url=os.getenv('DATABASE_URL', 'sqlite:///./barberflow.db'),
        timezone=os.getenv('TIMEZONE', 'America/Sao_Paulo'),
        evolution_api_url=(os.getenv('EVOLUTION_API_URL') or '').strip().rstrip('/'),
        evolution_api_key=(os.getenv('EVOLUTION_API_KEY') or '').strip(),
        reminder_window_start=int(os.getenv('REMINDER_WINDOW_START', '25')),
        reminder_window_end=int(os.getenv('REMINDER_WINDOW_END', '35')),
        reminder_interval_minutes=int(os.getenv('REMINDER_INTERVAL_MINUTES', '5')),
        reminder_scheduler_enabled=_flag(os.getenv('REMINDER_SCHEDULER_ENABLED', 'false')),
        log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    )
