from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="allow"
    )

    app_name: str = "neurolend-indexer"
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8080)

    rpc_url: Annotated[str, AnyHttpUrl | str] = Field(default="https://evmrpc.0g.ai")
    rpc_timeout_seconds: int = Field(default=30, ge=1)
    rpc_requests_per_second: float = Field(
        default=10.0,
        gt=0,
        description="Maximum RPC requests per second to avoid rate limiting",
    )

    contract_address: str = Field(
        default="0xD9aB5190eFA86eB955C5e146ccb30421faBc3405",
        min_length=42,
        max_length=42,
    )
    start_block: int = Field(
        default=7039846, ge=0, description="First block scanned when no checkpoint"
    )

    # Windowing and durability
    batch_size: int = Field(default=100, ge=1, description="Blocks per scan window")
    output_dir: Path = Field(default=Path("./indexer_output"))
    checkpoint_file: str = Field(default="indexer_state.json")
    flush_threshold: int = Field(
        default=100, ge=1, description="Buffered events that trigger a flush"
    )
    checkpoint_interval: int = Field(
        default=10, ge=1, description="Windows between checkpoint saves"
    )
    storage_retry_attempts: int = Field(
        default=3, ge=1, description="Flush attempts before giving up"
    )

    # Timers
    poll_interval_seconds: float = Field(default=30.0, ge=0)
    retry_backoff_seconds: float = Field(
        default=5.0, ge=0, description="Delay before retrying a failed window"
    )
    flush_interval_seconds: float = Field(
        default=60.0,
        ge=0,
        description="Flush buffered events this often while live polling; 0 disables",
    )

    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)
    metrics_port: int = Field(default=9000)

    @property
    def checkpoint_path(self) -> Path:
        return self.output_dir / self.checkpoint_file


@lru_cache
def get_settings() -> Settings:
    return Settings()
