from __future__ import annotations

import os
from pathlib import Path

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from repo2txt.config import ProviderType
from repo2txt.fetcher import FetchConfig
from repo2txt.models import Credentials

ENV_FILE = find_dotenv(usecwd=True)

TOKEN_ENV_VARS: dict[ProviderType, str] = {
    ProviderType.GITHUB: "GITHUB_TOKEN",
    ProviderType.GITLAB: "GITLAB_TOKEN",
    ProviderType.AZURE: "AZURE_DEVOPS_TOKEN",
}


def load_env(env_file: str | Path | None = None) -> bool:
    """Load a `.env` file without overriding variables already set in the environment."""
    target = env_file if env_file is not None else ENV_FILE
    if not target:
        return False
    return load_dotenv(target, override=False)


def credentials_from_env(provider_type: ProviderType | str, token: str | None = None) -> Credentials:
    """Credentials for a provider; an explicit `token` wins over the environment.

    Args:
        provider_type (ProviderType | str): the backend the credentials are for.
        token (str | None): token given on the command line, if any.

    Returns:
        Credentials: possibly empty credentials (local backends never need any).
    """
    variable = TOKEN_ENV_VARS.get(ProviderType(provider_type))
    if not token and variable:
        token = os.environ.get(variable) or None
    return Credentials(token=token or None)


class Settings(BaseModel):
    """Configuration settings for one repo2txt run."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    source: str = Field(..., description="Repository URL, local directory or .zip archive.")
    output: Path | None = Field(default=None, description="Output file (.txt or .md).")
    format: str = Field(default="", description="Force format: text or markdown.")
    provider: str = Field(default="", description="Force the provider type.")
    ref: str = Field(default="", description="Branch or tag to export.")
    path: str = Field(default="", description="Sub-directory to export.")
    token: str = Field(default="", description="Access token (overrides the environment).")
    log_file: str = Field(default="", description="Log file path.")

    gitignore: list[str] = Field(default_factory=list, description="Gitignore-style exclusion pattern.")
    gitignore_file: Path | None = Field(default=None, description="File holding exclusion patterns.")
    ext: list[str] = Field(default_factory=list, description="Only export files with these extensions.")
    show_excluded: bool = Field(default=False, description="Show excluded nodes in the tree.")
    common_only: bool = Field(default=False, description="Without ext, select only common source-code files.")

    max_concurrent: int = Field(default=10, gt=0, description="Concurrent requests.")
    retries: int = Field(default=3, ge=0, description="Retries after a transient failure.")
    retry_delay: float = Field(default=1.0, ge=0, description="Seconds between retries.")
    min_delay: float = Field(default=0.1, ge=0, description="Minimum seconds between request starts.")
    timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds.")

    encoding: str = Field(default="cl100k_base", description="tiktoken encoding.")
    no_worker: bool = Field(default=False, description="Count tokens inline instead of on a worker thread.")

    def fetch_config(self) -> FetchConfig:
        return FetchConfig(
            max_concurrent=self.max_concurrent,
            retries=self.retries,
            retry_delay=self.retry_delay,
            min_delay_between_starts=self.min_delay,
        )

    def patterns(self) -> list[str]:
        """Exclusion patterns from `--gitignore-file` followed by `--gitignore` ones."""
        lines: list[str] = []
        if self.gitignore_file is not None:
            lines.extend(self.gitignore_file.read_text(encoding="utf-8").splitlines())
        lines.extend(self.gitignore)
        return lines
