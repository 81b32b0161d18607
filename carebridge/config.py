from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BackendAdapter(Enum):
    REST = "rest"
    MEMORY = "memory"


class SupabaseConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SUPABASE_", env_file=".env", extra="ignore")

    url: str = ""
    anon_key: str = ""
    adapter: BackendAdapter = BackendAdapter.REST
    timeout: float = 30.0
    reports_bucket: str = "medical-reports"
    auth_redirect_url: str = "ihms://auth-callback"


class SchedulingConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SCHEDULING_", env_file=".env", extra="ignore")

    default_slot_capacity: int = 5
    day_start_hour: int = 9
    day_end_hour: int = 17
    restock_threshold_days: int = 7
    generation_weeks: int = 2
    suggestion_limit: int = 5
    lookahead_days: int = 7


class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    clinic_timezone: str = "UTC"
    supabase: SupabaseConfig = Field(default_factory=lambda: SupabaseConfig())
    scheduling: SchedulingConfig = Field(default_factory=lambda: SchedulingConfig())
