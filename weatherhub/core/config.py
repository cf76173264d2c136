from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "Weather Station Hub"

    # Logging
    log_level: str = "INFO"
    log_file: str = "weatherhub.log"

    # Device mode: "serial" for the attached board, "sim" for development
    device_mode: str = "serial"

    # Serial link
    serial_baudrate: int = 9600
    serial_read_timeout_s: float = 1.0
    known_vendors: list[str] = Field(default_factory=lambda: ["arduino", "wch.cn", "ftdi"])
    reconnect_interval_s: float = 10.0

    # Subscribers
    subscriber_queue_size: int = 100
    subscriber_send_timeout_s: float = 5.0

    # Alerts
    alert_cooldown_s: float = 60.0
    high_temperature_c: float = 40.0
    heavy_rain_mm: float = 750.0
    low_pressure_hpa: float = 980.0

    # Notifier: "log", "webhook" or "smtp"
    notifier_mode: str = "log"
    webhook_url: str = ""
    webhook_timeout_s: float = 5.0
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_timeout_s: float = 10.0
    alert_sender: str = "Weather Station Alert <alerts@localhost>"
    alert_recipients: list[str] = Field(default_factory=list)

    # Storage
    sqlite_path: str = Field(default="weather.db")
    persist_every: int = Field(default=1, ge=1)

    # Simulator
    sim_sample_seconds: float = 2.0
    sim_failure_rate: float = 0.0  # e.g. 0.02 emits 2% malformed lines

    # Dashboard origins allowed by CORS
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])


settings = Settings()
