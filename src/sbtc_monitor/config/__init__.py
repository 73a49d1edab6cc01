from functools import lru_cache

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .chain import ChainSettings
from .database import DatabaseSettings
from .monitor import MonitorSettings
from .server import ServerSettings
from .webhook import WebhookSettings


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        env_prefix="SBTC_MONITOR_",
        extra="ignore",
    )

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    chain: ChainSettings = Field(default_factory=ChainSettings)
    monitor: MonitorSettings = Field(default_factory=MonitorSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    # Unprefixed names shared with the payment-link app. The prefixed
    # nested variables take precedence.
    database_url: str | None = Field(
        None, validation_alias=AliasChoices("DATABASE_URL"), exclude=True
    )
    stacks_api_url: str | None = Field(
        None, validation_alias=AliasChoices("STACKS_API_URL"), exclude=True
    )

    @model_validator(mode="after")
    def apply_shared_aliases(self) -> "Settings":
        if self.database_url and "url" not in self.database.model_fields_set:
            self.database = self.database.model_copy(update={"url": self.database_url})
        if self.stacks_api_url and "api_url" not in self.chain.model_fields_set:
            self.chain = ChainSettings.model_validate(
                {
                    **self.chain.model_dump(exclude_unset=True),
                    "api_url": self.stacks_api_url,
                }
            )
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()


__all__ = [
    "ChainSettings",
    "DatabaseSettings",
    "MonitorSettings",
    "ServerSettings",
    "Settings",
    "WebhookSettings",
    "get_settings",
]
