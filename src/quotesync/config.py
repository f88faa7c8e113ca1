from typing import Dict, List, Optional

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class TableDescriptor(BaseModel):
    """One replicated table: its name, key column and (optionally) its schema."""

    name: str
    primary_key: str
    # column name -> SQLite type; empty means "no authoritative schema"
    columns: Dict[str, str] = {}


DEFAULT_TABLES: List[TableDescriptor] = [
    TableDescriptor(name="customers", primary_key="customerCode"),
    TableDescriptor(name="components", primary_key="sku"),
    TableDescriptor(name="sub_assemblies", primary_key="subAssemblyId"),
    TableDescriptor(name="quotes", primary_key="quoteId"),
    TableDescriptor(name="projects", primary_key="projectId"),
    TableDescriptor(name="manual_quotes", primary_key="id"),
    TableDescriptor(name="generated_numbers", primary_key="id"),
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="QUOTESYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    local_db_path: str = "./server.db"
    remote_db_path: str = ""  # e.g. /mnt/nas/quotes/server.db
    sync_interval_minutes: int = 120
    username: str = ""
    tables: List[TableDescriptor] = DEFAULT_TABLES
    pull_cursor: str = "table"  # "table" or "row"
    auto_sync: bool = True
    log_level: str = "INFO"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
