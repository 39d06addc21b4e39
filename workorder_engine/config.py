from functools import lru_cache
from typing import Dict, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import Priority


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="WORKORDER_", env_file=".env", extra="ignore")

    # Scheduled job trigger (Authorization: Bearer <cron_secret>).
    # Cron endpoints refuse every request while unset.
    cron_secret: Optional[str] = None

    log_level: str = "INFO"

    # Escalation thresholds, hours since creation without response
    escalation_hours_critical: float = 2
    escalation_hours_high: float = 4
    escalation_hours_medium: float = 8
    escalation_hours_low: float = 24

    # Emergency tickets escalate sooner
    emergency_escalation_hours_critical: float = 1
    emergency_escalation_hours_high: float = 2

    # PM generator idempotency window
    pm_generation_window_hours: float = 24

    # How many individual results a job summary carries
    job_result_sample_size: int = 10

    # Reject / hold reasons
    min_reason_length: int = 10

    @field_validator('log_level', mode='before')
    @classmethod
    def parse_log_level(cls, v):
        if v is None or v == '':
            return "INFO"
        return str(v).upper()

    @property
    def escalation_thresholds(self) -> Dict[Priority, float]:
        return {
            Priority.CRITICAL: self.escalation_hours_critical,
            Priority.HIGH: self.escalation_hours_high,
            Priority.MEDIUM: self.escalation_hours_medium,
            Priority.LOW: self.escalation_hours_low,
        }

    @property
    def emergency_escalation_thresholds(self) -> Dict[Priority, float]:
        thresholds = dict(self.escalation_thresholds)
        thresholds[Priority.CRITICAL] = self.emergency_escalation_hours_critical
        thresholds[Priority.HIGH] = self.emergency_escalation_hours_high
        return thresholds


@lru_cache
def get_settings() -> Settings:
    return Settings()
