"""
bucketview configuration

Settings are read from environment variables, then from a .env file in the
current working directory. Variable names are the field names, case-insensitive
(e.g. R2_BUCKET_NAME, CACHE_TTL_SECONDS).
"""

import functools
import logging
from pathlib import Path
from typing import Annotated
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

REQUIRED_R2_SETTINGS = ["r2_endpoint", "r2_access_key_id", "r2_secret_access_key", "r2_bucket_name"]


class Settings(BaseSettings):
    r2_endpoint: Annotated[str, Field(description="S3-compatible endpoint URL of the object store")] = ""
    r2_access_key_id: Annotated[str, Field(description="Access key ID")] = ""
    r2_secret_access_key: Annotated[str, Field(description="Secret access key")] = ""
    r2_bucket_name: Annotated[str, Field(description="Bucket to browse")] = ""
    r2_region: Annotated[str, Field(description="Region name, 'auto' for Cloudflare R2")] = "auto"

    port: Annotated[int, Field(description="HTTP port")] = 3000

    cache_ttl_seconds: Annotated[
        float, Field(gt=0, description="Maximum age of a cached directory listing")
    ] = 24 * 60 * 60
    cache_file: Annotated[
        Path, Field(description="Where the directory cache is persisted between restarts")
    ] = Path(".cache") / "directory-cache.json"
    cache_encryption_key: Annotated[
        str | None, Field(description="Optional Fernet key used to encrypt the persisted cache")
    ] = None

    list_page_size: Annotated[int, Field(gt=0, le=1000, description="Keys requested per listing call")] = 1000
    preload_concurrency: Annotated[
        int, Field(gt=0, description="Directories listed in parallel during the startup crawl")
    ] = 5
    lazy_preload_batch_size: Annotated[
        int, Field(gt=0, description="Subfolders listed in parallel when a directory is viewed")
    ] = 3
    background_task_limit: Annotated[
        int, Field(gt=0, description="Background preload jobs allowed to run at the same time")
    ] = 4
    preload_on_startup: Annotated[bool, Field(description="Crawl the whole bucket at startup")] = True
    shutdown_timeout: Annotated[
        float, Field(ge=0, description="Seconds to wait for background work to drain on shutdown")
    ] = 10.0

    max_upload_size: Annotated[int, Field(gt=0, description="Maximum upload size in bytes")] = 50 * 1024 * 1024

    @model_validator(mode="after")
    def warn_missing_r2(self) -> "Settings":
        for name in REQUIRED_R2_SETTINGS:
            if not getattr(self, name):
                logging.warning(f"{name.upper()} is not set")
        return self

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@functools.lru_cache()
def get_settings() -> Settings:
    return Settings()
