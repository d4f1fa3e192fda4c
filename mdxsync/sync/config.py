"""
Configuration schema for the GitHub content sync.

A single YAML document describes which repository to mirror, where articles
and settings live inside it, how the webhook is addressed and how the
remote client retries. Secrets never live in the YAML: the config only
names the environment variables that hold them.
"""

import os
import yaml
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union
from pydantic import BaseModel, Field, field_validator

from ..config import (
    DEFAULT_DATABASE_PATH, GITHUB_API_URL, GITHUB_TOKEN_ENV, WEBHOOK_SECRET_ENV,
)
from .error_tracker import ConfigurationError


class ArticleStatus(str, Enum):
    """Publication status of an article."""
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class AccessLevel(str, Enum):
    """Who an article is intended for."""
    PUBLIC = "public"
    PRIVATE = "private"
    PREMIUM = "premium"


class RepositoryConfig(BaseModel):
    """The GitHub repository being mirrored."""
    owner: str = Field(..., description="Repository owner (user or organization)")
    name: str = Field(..., description="Repository name")
    branch: str = Field(default="main", description="Default branch; only changes on it are synced")
    api_url: str = Field(default=GITHUB_API_URL, description="GitHub REST API base URL")
    token_env: str = Field(default=GITHUB_TOKEN_ENV, description="Environment variable holding the API token")

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @field_validator('api_url')
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip('/')


class PathsConfig(BaseModel):
    """Where articles and settings live inside the repository."""
    contents_dir: str = Field(default="contents", description="Directory holding article files (recursed)")
    settings_dir: str = Field(default="settings", description="Directory holding settings files (not recursed)")
    article_extensions: List[str] = Field(default_factory=lambda: [".mdx"], description="Article file extensions")
    settings_extension: str = Field(default=".json", description="Settings file extension")

    @field_validator('contents_dir', 'settings_dir')
    @classmethod
    def normalize_dir(cls, v):
        v = v.strip('/')
        if not v:
            raise ValueError('Directory must not be empty')
        return v

    @field_validator('article_extensions')
    @classmethod
    def normalize_extensions(cls, v):
        if not v:
            raise ValueError('At least one article extension is required')
        return [ext if ext.startswith('.') else f'.{ext}' for ext in v]


class WebhookConfig(BaseModel):
    """Webhook receiver settings."""
    tenant_id: str = Field(default="default", description="Tenant identifier expected in the webhook path")
    secret_env: str = Field(default=WEBHOOK_SECRET_ENV, description="Environment variable holding the shared secret")
    run_in_background: bool = Field(default=False, description="Acknowledge first and sync in a background task")

    @field_validator('tenant_id')
    @classmethod
    def validate_tenant_id(cls, v):
        if len(v) < 3:
            raise ValueError('Tenant ID must be at least 3 characters')
        return v


class RetrySettings(BaseModel):
    """Retry and rate-limit behaviour of the remote client."""
    max_attempts: int = Field(default=3, ge=1, description="Attempts for transient (5xx/network) failures")
    base_delay_seconds: float = Field(default=2.0, ge=0, description="First backoff delay, doubled per attempt")
    max_delay_seconds: float = Field(default=30.0, ge=0, description="Upper bound for a single backoff delay")
    jitter: bool = Field(default=False, description="Randomize backoff delays between 0.5x and 1.5x")
    rate_limit_buffer_seconds: float = Field(default=1.0, ge=0, description="Extra wait after a rate limit reset")
    max_rate_limit_waits: int = Field(default=3, ge=0, description="Rate limit sleeps allowed per request")
    max_rate_limit_wait_seconds: float = Field(default=3660.0, ge=0, description="Longest single rate limit sleep; the default covers a full hourly primary window")
    request_timeout_seconds: float = Field(default=30.0, gt=0, description="Total timeout per HTTP request")


class SyncConfig(BaseModel):
    """Main configuration for the content sync."""
    version: str = Field(default="1.0.0", description="Configuration version")
    name: str = Field(..., description="Configuration name")
    description: Optional[str] = Field(None, description="Configuration description")

    repository: RepositoryConfig
    paths: PathsConfig = Field(default_factory=PathsConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    retry: RetrySettings = Field(default_factory=RetrySettings)

    # Storage
    database_path: str = Field(default=DEFAULT_DATABASE_PATH, description="SQLite content store path")

    # Processing
    default_status: ArticleStatus = Field(default=ArticleStatus.PUBLISHED, description="Status for articles without a valid one")
    max_concurrent_files: int = Field(default=4, ge=1, description="Files fetched and applied in parallel per run")
    honor_frontmatter_slug: bool = Field(default=False, description="Use a front-matter slug instead of the path-derived one")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[str] = Field(None, description="Log file path")

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> 'SyncConfig':
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def from_env(cls) -> 'SyncConfig':
        """
        Build a configuration from environment variables.

        GITHUB_OWNER and GITHUB_REPO are required; GITHUB_BRANCH,
        DATABASE_PATH, WEBHOOK_TENANT_ID and LOG_LEVEL are optional.
        """
        owner = os.environ.get('GITHUB_OWNER')
        repo = os.environ.get('GITHUB_REPO')
        if not owner or not repo:
            raise ConfigurationError(
                "GITHUB_OWNER and GITHUB_REPO must be set",
                recovery_suggestion="Set them in the environment or .env, or pass --config",
            )
        return cls(
            name=f"{owner}/{repo}",
            repository=RepositoryConfig(
                owner=owner,
                name=repo,
                branch=os.environ.get('GITHUB_BRANCH', 'main'),
            ),
            webhook=WebhookConfig(tenant_id=os.environ.get('WEBHOOK_TENANT_ID', 'default')),
            database_path=os.environ.get('DATABASE_PATH', DEFAULT_DATABASE_PATH),
            log_level=os.environ.get('LOG_LEVEL', 'INFO'),
        )

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> 'SyncConfig':
        """YAML when a path is given, otherwise the environment."""
        if path:
            return cls.from_yaml(path)
        return cls.from_env()

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Save configuration to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(mode='json')

        with open(path, 'w', encoding='utf-8') as f:
            yaml.dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)

    def github_token(self) -> str:
        token = os.environ.get(self.repository.token_env)
        if not token:
            raise ConfigurationError(
                f"Missing {self.repository.token_env} environment variable",
                recovery_suggestion="Create a token with read access to repository contents",
            )
        return token

    def webhook_secret(self) -> Optional[str]:
        return os.environ.get(self.webhook.secret_env) or None


def create_example_config() -> SyncConfig:
    """Create an example configuration."""
    return SyncConfig(
        name="Example Content Sync",
        description="Mirror articles and settings from a GitHub repository",
        repository=RepositoryConfig(owner="example-org", name="website-content", branch="main"),
        webhook=WebhookConfig(tenant_id="example-site"),
    )
