"""
Configuration management for Cinevault
"""

import json
import os
import shutil
import yaml
from pathlib import Path
from typing import Optional, List, Literal
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8765


class TranscodingConfig(BaseModel):
    ffmpeg_path: str = "auto"
    ffprobe_path: str = "auto"
    temp_directory: str = "./ingest_temp"
    max_concurrent_jobs: Optional[int] = None  # None = half the CPU cores
    max_queued_jobs: int = 8
    job_retention_seconds: float = 3600.0
    job_cleanup_interval: float = 300.0
    probe_timeout: float = 60.0
    transcode_timeout: Optional[float] = None  # Seconds, None = no limit
    stderr_tail_lines: int = 100
    # Audio re-encode profile
    audio_bitrate: str = "160k"
    audio_channels: int = 2
    # Software encoder quality
    software_preset: str = "medium"
    software_crf: int = 23

    def resolve_ffmpeg(self) -> str:
        return _resolve_tool(self.ffmpeg_path, "ffmpeg")

    def resolve_ffprobe(self) -> str:
        return _resolve_tool(self.ffprobe_path, "ffprobe")

    def resolve_max_concurrent_jobs(self) -> int:
        if self.max_concurrent_jobs and self.max_concurrent_jobs > 0:
            return self.max_concurrent_jobs
        return max(1, (os.cpu_count() or 2) // 2)


class HardwareConfig(BaseModel):
    prefer_hw_accel: bool = True
    fallback_to_software: bool = True
    nvenc_preset: str = "p4"
    qsv_preset: str = "medium"
    vaapi_device: str = "/dev/dri/renderD128"
    nvidia_device: str = "/dev/nvidia0"
    hw_quality: int = 23


class StorageConfig(BaseModel):
    backend: Literal["local", "s3"] = "local"
    bucket: str = "movies"
    local_root: str = "./object_store"
    # S3 / MinIO
    endpoint_url: Optional[str] = None  # e.g., "http://minio:9000"
    region_name: Optional[str] = None
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    read_chunk_size: int = 64 * 1024


class CatalogConfig(BaseModel):
    database_path: str = "./cinevault.db"
    timeout: float = 30.0


class MetadataConfig(BaseModel):
    api_url: str = "https://www.omdbapi.com"
    api_key: Optional[str] = None
    timeout: float = 10.0
    use_cache: bool = True


class HookCommand(BaseModel):
    name: str
    command: str
    args: List[str] = Field(default_factory=list)

    @field_validator("args", mode="before")
    @classmethod
    def _parse_args(cls, value):
        """Accept a list, a JSON array string or a whitespace separated string."""
        if value is None:
            return []
        if isinstance(value, str):
            return parse_command_args(value)
        return value


class LibraryConfig(BaseModel):
    directory: str = "./movies-library"
    command_timeout: float = 120.0
    hooks: List[HookCommand] = Field(default_factory=list)


class StreamingConfig(BaseModel):
    open_range_window: int = 1_000_000  # Bytes served for "bytes=N-" requests


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "json"
    file: Optional[str] = None


class CinevaultConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CINEVAULT_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    transcoding: TranscodingConfig = Field(default_factory=TranscodingConfig)
    hardware: HardwareConfig = Field(default_factory=HardwareConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    metadata: MetadataConfig = Field(default_factory=MetadataConfig)
    library: LibraryConfig = Field(default_factory=LibraryConfig)
    streaming: StreamingConfig = Field(default_factory=StreamingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def parse_command_args(raw_args: Optional[str]) -> List[str]:
    """Split hook arguments given either as a JSON array or space separated."""
    if not raw_args:
        return []
    trimmed = raw_args.strip()
    if trimmed.startswith("[") and trimmed.endswith("]"):
        try:
            parsed = json.loads(trimmed)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return [value for value in parsed if isinstance(value, str)]
    return [value for value in raw_args.split(" ") if value]


def _resolve_tool(configured: str, name: str) -> str:
    if configured and configured != "auto":
        return configured
    return shutil.which(name) or name


def find_config_file() -> Optional[Path]:
    """Find the configuration file in standard locations."""
    search_paths = [
        Path.cwd() / "cinevault.yaml",
        Path.cwd() / "cinevault.yml",
        Path.cwd() / "config" / "cinevault.yaml",
        Path.home() / ".config" / "cinevault" / "cinevault.yaml",
        Path("/etc/cinevault/cinevault.yaml"),
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


def load_config(config_path: Optional[str] = None) -> CinevaultConfig:
    """Load configuration from YAML file (environment fills the gaps) or use defaults."""
    config_file = Path(config_path) if config_path else find_config_file()

    if config_file and config_file.exists():
        with open(config_file, "r") as f:
            yaml_data = yaml.safe_load(f) or {}
        return CinevaultConfig(**yaml_data)

    return CinevaultConfig()


# Global config instance
_config: Optional[CinevaultConfig] = None


def get_config() -> CinevaultConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: CinevaultConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
