"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_anon_key: str = ""
    storage_bucket: str = "artes-cloudinary"

    # Backends
    job_backend: str = "supabase"  # "supabase" or "memory"

    # RunningHub
    runninghub_api_key: str = ""
    runninghub_base_url: str = "https://www.runninghub.ai"
    runninghub_timeout_seconds: float = 60.0
    public_base_url: str = ""  # where the provider can reach our webhook

    # Jobs
    stale_running_minutes: int = 15
    stale_pending_minutes: int = 5
    stale_batch_size: int = 5
    allowed_image_hosts: List[str] = ["supabase.co", "supabase.in"]

    # Push notifications
    vapid_public_key: Optional[str] = None
    vapid_private_key: Optional[str] = None
    vapid_subject: str = "mailto:contato@voxvisual.com"

    # Scheduled jobs (monthly reset, stale sweep)
    cron_secret: Optional[str] = None

    # Server
    port: int = 8001
    log_level: str = "INFO"
    cors_origins: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def webhook_url(self) -> str:
        base = (self.public_base_url or self.supabase_url).rstrip("/")
        return f"{base}/api/v1/webhooks/runninghub"

    def image_hosts(self) -> List[str]:
        hosts = list(self.allowed_image_hosts)
        if self.supabase_url:
            hosts.append(self.supabase_url.replace("https://", "").replace("http://", "").rstrip("/"))
        return hosts


settings = Settings()
