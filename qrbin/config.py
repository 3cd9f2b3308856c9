"""
Application configuration using Pydantic Settings.
Manages all environment variables and settings.
"""
from enum import Enum
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings
from pydantic import Field, field_validator, model_validator

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./qrbin.db"


class Environment(str, Enum):
    """Application environment modes."""
    DEV = "DEV"
    PRODUCTION = "PRODUCTION"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    environment: Environment = Field(
        default=Environment.DEV,
        description="Application environment: DEV or PRODUCTION"
    )

    # Application
    app_name: str = Field(default="QR Bin API")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    @model_validator(mode='after')
    def set_debug_from_environment(self):
        """Set debug mode based on environment if not explicitly set via environment variable."""
        # DEBUG 환경 변수가 명시적으로 설정되지 않은 경우에만 환경 모드에 따라 설정
        import os
        if 'DEBUG' not in os.environ:
            self.debug = self.environment == Environment.DEV
        return self

    @property
    def is_dev(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEV

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    # Database (빈 문자열이면 기본값 사용)
    database_url: str = Field(default=DEFAULT_DATABASE_URL)
    db_pool_size: int = Field(default=5)
    db_max_overflow: int = Field(default=10)
    db_pool_timeout: int = Field(default=30)
    db_pool_recycle: int = Field(default=1800)

    @field_validator("database_url", mode="before")
    @classmethod
    def coerce_empty_database_url(cls, v: str) -> str:
        if not v or not str(v).strip():
            return DEFAULT_DATABASE_URL
        return v

    # JWT (토큰 발급은 외부 인증 서비스 담당, 여기서는 검증만)
    jwt_secret_key: str = Field(default="jwt-secret-change-in-production")
    jwt_algorithm: str = Field(default="HS256")
    # 개발/테스트용 토큰 발급 시 만료 시간
    access_token_expire_minutes: int = Field(default=60)

    # Photo storage (로컬 파일시스템, bin 별 하위 디렉터리)
    photo_storage_path: str = Field(
        default="./uploads",
        description="Root directory for photo files. Each bin gets its own subdirectory.",
    )
    max_photo_size_bytes: int = Field(default=5 * 1024 * 1024)

    # Retention defaults for new locations (locations carry their own values afterwards)
    default_trash_retention_days: int = Field(default=30, ge=7, le=365)
    default_activity_retention_days: int = Field(default=90, ge=7, le=365)

    # Logging: 비우면 파일 로그(NDJSON) 비활성화, stdout만 사용
    log_dir: str = Field(default="", description="Directory for NDJSON log files")

    class Config:
        # 환경변수만 사용 (.env 파일 미사용)
        env_file = None
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Using lru_cache to avoid reading the environment on every request.
    """
    return Settings()
