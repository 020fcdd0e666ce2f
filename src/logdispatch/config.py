"""
logdispatch Configuration.

Each sink is configured by its own settings model with its own environment
variable prefix. Models can be constructed directly in code, or left to load
from the environment / ``.env``:

    from logdispatch.config import settings

    FileSink(settings.file)
    BatchingMailSink(settings.mail, smtp=settings.smtp)
"""

from __future__ import annotations

from enum import Enum
from functools import cached_property

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class ThresholdType(str, Enum):
    COUNTER = "counter"
    TIMER = "timer"


class DiagnosticsFormat(str, Enum):
    CONSOLE = "console"
    JSON = "json"


class SmtpSettings(BaseSettings):
    """SMTP endpoint and credentials used by the mail transport."""

    model_config = SettingsConfigDict(
        env_prefix="LOGDISPATCH_SMTP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    host: str = Field(default="smtp.gmail.com", description="SMTP server host")
    port: int = Field(default=587, gt=0, le=65535, description="SMTP server port")
    use_tls: bool = Field(default=True, description="Upgrade the connection with STARTTLS")
    sender_address: str = Field(default="", description="From address, also the login user")
    sender_password: SecretStr = Field(default=SecretStr(""), description="SMTP password")
    recipient_address: str = Field(default="", description="Where log digests are sent")
    subject: str = Field(default="App Logs", description="Digest subject line")
    body_text: str = Field(default="Attached is the latest log file.", description="Digest body")
    timeout_seconds: float = Field(default=30.0, gt=0, description="Socket timeout per delivery")

    @property
    def is_complete(self) -> bool:
        return bool(self.host and self.sender_address and self.recipient_address)


class MailSinkSettings(BaseSettings):
    """Batching policy for the mail sink."""

    model_config = SettingsConfigDict(
        env_prefix="LOGDISPATCH_MAIL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    threshold_type: ThresholdType = Field(default=ThresholdType.COUNTER, description="counter or timer")
    log_count_threshold: int = Field(default=10, gt=0, description="Entries per digest (counter)")
    time_threshold_seconds: float = Field(default=300.0, ge=0, description="Seconds between digests (timer)")
    retry_cooldown_seconds: float = Field(default=300.0, ge=0, description="Backoff after a failed delivery")
    counter_respects_cooldown: bool = Field(
        default=False,
        description="Also gate counter-triggered flushes by the failure cooldown",
    )
    blob_name: str = Field(default="logs.txt", description="Buffer blob in the private data directory")
    attachment_name: str = Field(default="logs.txt", description="File name of the attachment")


class FileSinkSettings(BaseSettings):
    """Location and session behaviour of the file sink."""

    model_config = SettingsConfigDict(
        env_prefix="LOGDISPATCH_FILE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    parent_directory: str = Field(default="Downloads", description="Directory under the public root")
    child_directory: str = Field(default="MyAppLogs", description="Directory under parent_directory")
    file_name: str = Field(default="my_app_log.txt", description="Log file name")
    clear_file_when_app_launched: bool = Field(
        default=False,
        description="Reset the log file once, before the first write of this session",
    )

    @property
    def relative_directory(self) -> str:
        return f"{self.parent_directory}/{self.child_directory}/"


class DiagnosticsSettings(BaseSettings):
    """Rendering of the library's own diagnostics."""

    model_config = SettingsConfigDict(
        env_prefix="LOGDISPATCH_DIAG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    level: str = Field(default="INFO", description="Log level")
    format: DiagnosticsFormat = Field(default=DiagnosticsFormat.CONSOLE, description="Output format")


class Settings(BaseSettings):
    """Composite settings aggregating every sink's configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @cached_property
    def smtp(self) -> SmtpSettings:
        return SmtpSettings()

    @cached_property
    def mail(self) -> MailSinkSettings:
        return MailSinkSettings()

    @cached_property
    def file(self) -> FileSinkSettings:
        return FileSinkSettings()

    @cached_property
    def diagnostics(self) -> DiagnosticsSettings:
        return DiagnosticsSettings()


settings = Settings()

__all__ = [
    "Settings",
    "settings",
    "SmtpSettings",
    "MailSinkSettings",
    "FileSinkSettings",
    "DiagnosticsSettings",
    "ThresholdType",
    "DiagnosticsFormat",
]
