from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


SQUARE_BASE_URLS = {
    "sandbox": "https://connect.squareupsandbox.com",
    "production": "https://connect.squareup.com",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"

    # Local state
    data_dir: str = "data"
    gift_card_cache_filename: str = "gift-cards.json"

    # Operator API security
    console_api_key: str = ""

    # Square configuration
    square_access_token: str = ""
    square_environment: Literal["sandbox", "production"] = "sandbox"
    square_api_version: str = "2024-07-17"
    square_base_url: str | None = None
    square_timeout_seconds: float = 15.0
    square_location_id: str | None = None
    square_webhook_signature_key: str = ""
    square_webhook_notification_url: str = ""

    # Gift card sync
    gift_card_sync_disabled: bool = False
    gift_card_reconcile_interval_seconds: int = 24 * 60 * 60
    gift_card_reconcile_page_size: int = 50
    gift_card_default_page_size: int = 30
    gift_card_discrepancy_limit: int = 50
    gift_card_webhook_event_prefixes: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["gift_card", "gift_card_activity"]
    )

    @field_validator("gift_card_webhook_event_prefixes", mode="before")
    @classmethod
    def _parse_prefix_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []

    @property
    def square_api_base_url(self) -> str:
        if self.square_base_url:
            return self.square_base_url.rstrip("/")
        return SQUARE_BASE_URLS[self.square_environment]

    @property
    def gift_card_cache_path(self) -> Path:
        directory = Path(self.data_dir)
        if not directory.is_absolute():
            directory = directory.resolve()
        return directory / self.gift_card_cache_filename


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
