import os
from functools import lru_cache
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: Optional[str],
        timezone: str,
        auto_create_schema: bool,
        dev_owner_id: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.auto_create_schema = auto_create_schema
        self.dev_owner_id = dev_owner_id


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # An unset URL keeps the whole process on the in-memory store.
    database_url = os.getenv("WALLET_DATABASE_URL") or None
    timezone = os.getenv("WALLET_TIMEZONE", "UTC")
    auto_create_schema = _env_flag("WALLET_AUTO_CREATE_SCHEMA", "1")
    dev_owner_id = os.getenv("WALLET_DEV_OWNER_ID", "dev|local-user")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        auto_create_schema=auto_create_schema,
        dev_owner_id=dev_owner_id,
    )
