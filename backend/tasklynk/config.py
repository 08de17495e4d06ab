from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    data_path: Path = Path.home() / "TaskLynk"
    api_prefix: str = "/api"
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"

    session_ttl_seconds: int = 8 * 3600
    # Cap upload sizes to keep attachment storage bounded.
    max_upload_bytes: int = 25 * 1024 * 1024  # 25 MiB
    max_profile_picture_bytes: int = 2 * 1024 * 1024

    auto_approve_seconds: int = 180
    payment_poll_interval_seconds: int = 2
    payment_poll_max_attempts: int = 90
    attachment_retention_days: int = 7
    retention_sweep_minutes: int = 30
    scheduler_enabled: bool = True

    mpesa_environment: str = "sandbox"
    mpesa_consumer_key: str = ""
    mpesa_consumer_secret: str = ""
    mpesa_shortcode: str = "174379"
    mpesa_passkey: str = ""
    mpesa_callback_url: str = "http://127.0.0.1:8000/api/mpesa/callback"
    mpesa_account_reference: str = "TaskLynk"
    mpesa_timeout_seconds: int = 30

    # Outbound mail; an empty smtp_host logs messages instead of sending them.
    smtp_host: str = ""
    smtp_port: int = 465
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_ssl: bool = True
    mail_sender: str = "TaskLynk <no-reply@tasklynk.co.ke>"
    mail_timeout_seconds: int = 30
    email_sweep_seconds: int = 10

    verification_code_ttl_minutes: int = 15
    verification_max_attempts: int = 5

    @property
    def db_path(self) -> Path:
        return self.data_path / "db.sqlite"

    @property
    def attachments_dir(self) -> Path:
        return self.data_path / "jobs"

    @property
    def avatars_dir(self) -> Path:
        return self.data_path / "avatars"

    @property
    def mpesa_base_url(self) -> str:
        if self.mpesa_environment == "production":
            return "https://api.safaricom.co.ke"
        return "https://sandbox.safaricom.co.ke"

    model_config = {"env_prefix": "TASKLYNK_"}


settings = Settings()
