from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Platform
    tz: str = Field(default="Africa/Dakar", alias="TZ")
    site_url: str = "http://localhost:5174"
    brand: str = "Health-e"

    # WhatsApp Cloud API
    wa_token: str = ""
    wa_phone_number_id: str = ""
    wa_api_version: str = "v20.0"
    wa_template_language: str = "fr"
    wa_template_confirmed: str = ""
    wa_template_cancelled: str = ""
    wa_template_rescheduled: str = ""
    wa_template_reminder: str = ""
    wa_template_startnow: str = ""

    # HTTP resilience for outbound messaging
    http_retries: int = 2
    http_backoff_ms: int = 400
    http_timeout_seconds: float = 10.0

    # Twilio (SMS fallback); leave empty to keep the log-only stub
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""

    # Phone index
    phone_index_secret: str = ""

    # Payments
    paydunya_master_key: str = ""

    # Email bridge (documents consumed by the mail extension)
    mail_from: str = "Health-e <no-reply@health-e.sn>"
    mail_reply_to: str = "support@health-e.sn"
    mail_site_url: str = "https://health-e.sn"

    # Storage
    store_backend: str = "memory"      # "memory" or "firestore"
    firebase_credentials: str = ""     # path to a service account JSON
    enforce_app_check: bool = False

    # Join gate
    join_grace_minutes: int = 30

    # Server
    log_level: str = "INFO"
    port: int = 8000

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        populate_by_name = True
        extra = "ignore"


settings = Settings()
