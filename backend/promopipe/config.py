"""Configuration management with YAML and environment variable support."""

from pathlib import Path
from typing import ClassVar

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads configuration from YAML file."""

    def get_field_value(self, field, field_name: str):
        # Not used with prepare method
        pass

    def prepare_field_value(self, field_name: str, field, value, value_is_complex: bool):
        return value

    def __call__(self):
        # Load from config.yaml in current directory
        yaml_path = Path("config.yaml")
        if not yaml_path.exists():
            return {}

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return data


class GoogleCloudConfig(BaseModel):
    """Google Cloud configuration for Vertex AI backed models.

    project_id only needs to be set when a gemini-* model is routed.
    """

    project_id: str = ""
    location: str = "us-central1"
    use_vertex_ai: bool = True


class OllamaConfig(BaseModel):
    """Ollama endpoint used for ollama/* model ids."""

    endpoint: str = "http://localhost:11434"
    api_key: str | None = None


class ModelsConfig(BaseModel):
    """Model identifiers for each LLM-backed stage."""

    analysis_llm: str = "gemini-2.5-flash"
    script_llm: str = "gemini-2.5-flash"
    code_llm: str = "gemini-2.5-pro"
    edit_llm: str = "gemini-2.5-flash"


class PipelineConfig(BaseModel):
    """Pipeline execution parameters."""

    max_render_attempts: int = Field(default=3, ge=1)
    abort_on_disconnect: bool = False
    fetch_timeout_seconds: float = 20.0
    max_page_chars: int = 20000
    default_fps: int = 30


class ServicesConfig(BaseModel):
    """External service endpoints."""

    render_url: str = "http://localhost:3100/render"
    render_timeout_seconds: float = 280.0
    render_api_key: str | None = None


class BillingConfig(BaseModel):
    """Credit cost per operation."""

    generate_cost: int = 5
    continue_cost: int = 3
    edit_script_cost: int = 1
    edit_video_cost: int = 1


class StorageConfig(BaseModel):
    """Storage and database configuration."""

    database_url: str = "sqlite+aiosqlite:///promopipe.db"
    tmp_dir: Path = Path("tmp")

    @field_validator("tmp_dir", mode="before")
    @classmethod
    def convert_tmp_dir_to_path(cls, v):
        """Convert string to Path object."""
        if isinstance(v, str):
            return Path(v)
        return v


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: list[str] = ["http://localhost:3000"]


class Settings(BaseSettings):
    """Main application settings with YAML and environment variable support.

    Configuration sources (in priority order):
    1. Environment variables (prefix: PROMOPIPE_, delimiter: __)
    2. YAML file (config.yaml)
    3. Field defaults
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="PROMOPIPE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    google_cloud: GoogleCloudConfig = GoogleCloudConfig()
    ollama: OllamaConfig = OllamaConfig()
    models: ModelsConfig = ModelsConfig()
    pipeline: PipelineConfig = PipelineConfig()
    services: ServicesConfig = ServicesConfig()
    billing: BillingConfig = BillingConfig()
    storage: StorageConfig = StorageConfig()
    server: ServerConfig = ServerConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Customize settings sources to include YAML configuration.

        Priority order (highest to lowest):
        1. Environment variables
        2. YAML file
        3. Init settings (programmatic defaults)
        """
        return (
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            init_settings,
        )


# Singleton instance
settings = Settings()
