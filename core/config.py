import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass
class PaymentTerms:
    """
    Fixed fee charged for every print job.
    """

    amount_sats: int = 1000
    amount_usd: float = 1.0
    pay_to: str = ""
    token_type: str = "sBTC"
    network: str = "mainnet"
    window: timedelta = timedelta(minutes=30)


@dataclass
class LifecycleConfig:
    retention: timedelta = timedelta(days=7)
    store_timeout: float = 5.0  # seconds


@dataclass
class AgentConfig:
    """
    Configuration for the remote print agent.
    """

    poll_interval: float = 10.0  # seconds
    file_prefix: str = "job_"


class Settings(BaseSettings):
    APP_NAME: str = "Print Queue"
    LOG_LEVEL: str = "INFO"
    ENV: str = "dev"

    # Payment
    PRICE_SATS: int = 1000
    PRICE_USD: float = 1.0
    PAYMENT_ADDRESS: str = ""
    PAYMENT_TOKEN: str = "sBTC"
    PAYMENT_NETWORK: str = "mainnet"
    PAYMENT_WINDOW_MINUTES: int = 30

    # Job store
    JOB_RETENTION_DAYS: int = 7
    STORE_TIMEOUT: float = 5.0  # seconds

    model_config = SettingsConfigDict()

    def payment_terms(self) -> PaymentTerms:
        return PaymentTerms(
            amount_sats=self.PRICE_SATS,
            amount_usd=self.PRICE_USD,
            pay_to=self.PAYMENT_ADDRESS,
            token_type=self.PAYMENT_TOKEN,
            network=self.PAYMENT_NETWORK,
            window=timedelta(minutes=self.PAYMENT_WINDOW_MINUTES),
        )

    def lifecycle_config(self) -> LifecycleConfig:
        return LifecycleConfig(
            retention=timedelta(days=self.JOB_RETENTION_DAYS),
            store_timeout=self.STORE_TIMEOUT,
        )


class LocalSettings(Settings):
    ENV: str = "dev"


class ProductionSettings(Settings):
    ENV: str = "production"
    REDIS_URL: str = Field(..., validation_alias="REDIS_URL")


class AgentSettings(BaseSettings):
    """
    Settings for the print agent running next to the printer.
    """

    LOG_LEVEL: str = "INFO"
    ENV: str = "dev"
    CLOUD_API_URL: str = "http://localhost:8000"
    PRINTER_HOST: str = "192.168.1.100"
    MOONRAKER_PORT: int = 7125
    POLL_INTERVAL: float = 10.0  # seconds
    REQUEST_TIMEOUT: float = 10.0  # seconds
    # e.g. "prusa-slicer --export-gcode {input} --output {output}"
    SLICER_COMMAND: Optional[str] = None
    FILE_PREFIX: str = "job_"

    model_config = SettingsConfigDict()

    @property
    def printer_url(self) -> str:
        return f"http://{self.PRINTER_HOST}:{self.MOONRAKER_PORT}"

    def agent_config(self) -> AgentConfig:
        return AgentConfig(poll_interval=self.POLL_INTERVAL, file_prefix=self.FILE_PREFIX)


# Factory to choose the right config
def get_settings() -> Settings:
    env = os.getenv("ENV", "local")
    if env == "production":
        return ProductionSettings()  # type: ignore
    return LocalSettings()
