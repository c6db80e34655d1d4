"""Configuration loading from environment variables and jarvis.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_DATA_DIR = Path.home() / ".jarvis" / "data"
_CONFIG_FILENAME = "jarvis.toml"


@dataclass
class GitHubConfig:
    """Remote repository target and credential."""

    token: str = ""
    owner: str = ""
    repo: str = ""
    branch: str = "main"
    api_url: str = "https://api.github.com"
    timeout: float = 30.0

    @property
    def is_enabled(self) -> bool:
        """Capability check: every field needed to reach the repo is present."""
        return bool(self.token and self.owner and self.repo)

    @property
    def target(self) -> str:
        return f"{self.owner}/{self.repo}@{self.branch}"


@dataclass
class SyncConfig:
    """Merge engine tuning."""

    conflict_policy: str = "manual"
    max_concurrency: int = 8
    metadata_path: str = ".jarvis-sync.json"


@dataclass
class JarvisConfig:
    """Top-level Jarvis configuration."""

    github: GitHubConfig = field(default_factory=GitHubConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    data_dir: Path = _DEFAULT_DATA_DIR
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> JarvisConfig:
    """Load configuration from environment variables and optional jarvis.toml.

    Priority: environment variables > jarvis.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.jarvis/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, Path.home() / ".jarvis" / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    github_data = file_data.get("github", {})
    sync_data = file_data.get("sync", {})

    config = JarvisConfig(
        github=GitHubConfig(
            token=os.getenv("GITHUB_TOKEN", github_data.get("token", "")),
            owner=os.getenv("GITHUB_REPO_OWNER", github_data.get("owner", "")),
            repo=os.getenv("GITHUB_REPO_NAME", github_data.get("repo", "")),
            branch=os.getenv("GITHUB_BRANCH", github_data.get("branch", "main")),
            api_url=os.getenv(
                "GITHUB_API_URL", github_data.get("api_url", "https://api.github.com")
            ).rstrip("/"),
            timeout=float(os.getenv("JARVIS_SYNC_TIMEOUT", github_data.get("timeout", 30))),
        ),
        sync=SyncConfig(
            conflict_policy=os.getenv(
                "JARVIS_CONFLICT_POLICY", sync_data.get("conflict_policy", "manual")
            ),
            max_concurrency=int(sync_data.get("max_concurrency", 8)),
            metadata_path=sync_data.get("metadata_path", ".jarvis-sync.json"),
        ),
        data_dir=Path(
            os.getenv("JARVIS_DATA_DIR", file_data.get("data_dir", str(_DEFAULT_DATA_DIR)))
        ).expanduser(),
        log_level=os.getenv("JARVIS_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
