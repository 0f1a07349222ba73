import os
from typing import Annotated, Any, Literal

from pydantic import AnyUrl, BaseModel, BeforeValidator, ConfigDict, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_cors(v: Any) -> list[str] | str:
    if isinstance(v, str) and not v.startswith("["):
        return [i.strip() for i in v.split(",")]
    elif isinstance(v, list | str):
        return v
    raise ValueError(v)


class SiteConfig(BaseModel):
    """A site to crawl: base URL plus display name."""

    model_config = ConfigDict(frozen=True)

    url: str
    name: str

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # 使用上一级目录的 .env 文件
        env_file="../.env",
        env_ignore_empty=True,
        extra="ignore",
    )

    PROJECT_NAME: str = "Site Search"
    API_V1_STR: str = "/api"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    SENTRY_DSN: str | None = None
    LOG_LEVEL: str = "INFO"

    BACKEND_CORS_ORIGINS: Annotated[
        list[AnyUrl] | str, BeforeValidator(parse_cors)
    ] = []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_cors_origins(self) -> list[str]:
        return [str(origin).rstrip("/") for origin in self.BACKEND_CORS_ORIGINS]

    SQLALCHEMY_DATABASE_URI: str = "sqlite:///./sitesearch.db"

    # 爬虫参数
    INDEXING_SITES: list[SiteConfig] = []
    USER_AGENT: str = "SiteSearchBot/1.0 (+https://example.com/bot)"
    REFERRER: str = "https://www.google.com"
    REQUEST_DELAY_MS: int = 500
    REQUEST_TIMEOUT_S: float = 10.0
    MAX_DEPTH: int = 10
    MAX_RETRIES: int = 3
    RETRY_DELAY_S: float = 1.0
    CRAWL_WORKERS: int = os.cpu_count() or 4

    # 搜索参数
    COMMON_LEMMA_THRESHOLD: float = 0.99
    SMALL_SITE_PAGE_LIMIT: int = 200
    SNIPPET_MAX_LENGTH: int = 300
    SNIPPET_CONTEXT_WORDS: int = 6
    SEARCH_DEFAULT_LIMIT: int = 20


settings = Settings()  # type: ignore
