"""Runtime configuration for the orchestrator, agent workers and job scheduler."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

DEFAULT_API_BASE = "https://api.locusai.dev/api"
SUPPORTED_PROVIDERS: tuple[str, ...] = ("claude", "codex")
DEFAULT_PROVIDER = "claude"
DEFAULT_MODELS: dict[str, str] = {
    "claude": "opus",
    "codex": "gpt-5.3-codex",
}
MAX_AGENTS = 5
DEFAULT_JOBS_CONFIG_PATH = Path(".locus/jobs.json")


@dataclass(slots=True)
class ApiSettings:
    """Remote task API connection settings."""

    base_url: str = DEFAULT_API_BASE
    api_key: str = ""
    timeout_seconds: float = 30.0
    max_retries: int = 3


@dataclass(slots=True)
class AgentSettings:
    """Agent runtime settings shared by the orchestrator and its workers."""

    provider: str = DEFAULT_PROVIDER
    model: str | None = None
    agent_count: int = 1
    use_worktrees: bool = False
    auto_push: bool = False
    base_branch: str | None = None
    runner_timeout_seconds: int = 3_600
    poll_interval_seconds: float = 2.0
    spawn_stagger_seconds: float = 5.0
    stale_agent_seconds: int = 600

    def resolved_model(self) -> str:
        return self.model or DEFAULT_MODELS[self.provider]


@dataclass(slots=True)
class JobsSettings:
    """Maintenance job scheduler settings."""

    config_path: Path = DEFAULT_JOBS_CONFIG_PATH


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    project_path: Path = Path(".")
    workspace_id: str = ""
    sprint_id: str | None = None
    log_level: str = "INFO"
    api: ApiSettings = field(default_factory=ApiSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)
    jobs: JobsSettings = field(default_factory=JobsSettings)

    @classmethod
    def from_env(cls, project_path: Path | None = None) -> Settings:
        """Load settings from environment with defaults suitable for local runs."""

        resolved_project = project_path or Path(os.getenv("LOCUS_PROJECT_PATH", "."))
        jobs_path_raw = os.getenv("LOCUS_JOBS_CONFIG_PATH", "").strip()
        jobs_path = (
            Path(jobs_path_raw) if jobs_path_raw else resolved_project / DEFAULT_JOBS_CONFIG_PATH
        )
        return cls(
            project_path=resolved_project,
            workspace_id=os.getenv("LOCUS_WORKSPACE_ID", "").strip(),
            sprint_id=os.getenv("LOCUS_SPRINT_ID", "").strip() or None,
            log_level=os.getenv("LOCUS_LOG_LEVEL", "INFO").strip().upper() or "INFO",
            api=ApiSettings(
                base_url=os.getenv("LOCUS_API_BASE", DEFAULT_API_BASE).strip(),
                api_key=os.getenv("LOCUS_API_KEY", "").strip(),
                timeout_seconds=float(os.getenv("LOCUS_API_TIMEOUT_SECONDS", "30.0")),
                max_retries=int(os.getenv("LOCUS_API_MAX_RETRIES", "3")),
            ),
            agent=AgentSettings(
                provider=os.getenv("LOCUS_PROVIDER", DEFAULT_PROVIDER).strip().lower(),
                model=os.getenv("LOCUS_MODEL", "").strip() or None,
                agent_count=int(os.getenv("LOCUS_AGENT_COUNT", "1")),
                use_worktrees=_env_bool("LOCUS_USE_WORKTREES", default=False),
                auto_push=_env_bool("LOCUS_AUTO_PUSH", default=False),
                base_branch=os.getenv("LOCUS_BASE_BRANCH", "").strip() or None,
                runner_timeout_seconds=int(os.getenv("LOCUS_RUNNER_TIMEOUT_SECONDS", "3600")),
                poll_interval_seconds=float(os.getenv("LOCUS_POLL_INTERVAL_SECONDS", "2.0")),
            ),
            jobs=JobsSettings(config_path=jobs_path),
        )

    def validate_for_orchestrator(self) -> None:
        """Raise configuration error if agents cannot be started with these settings."""

        if not self.workspace_id:
            raise ValueError(
                "Workspace id is required. Set LOCUS_WORKSPACE_ID or pass --workspace-id.",
            )
        if not self.api.api_key:
            raise ValueError("API key is required. Set LOCUS_API_KEY or pass --api-key.")
        _validate_api_base(self.api.base_url)
        if self.agent.provider not in SUPPORTED_PROVIDERS:
            raise ValueError(
                f"Unsupported provider {self.agent.provider!r}. "
                f"Expected one of: {', '.join(SUPPORTED_PROVIDERS)}.",
            )
        if self.agent.runner_timeout_seconds <= 0:
            raise ValueError("LOCUS_RUNNER_TIMEOUT_SECONDS must be > 0.")
        if self.agent.poll_interval_seconds <= 0:
            raise ValueError("LOCUS_POLL_INTERVAL_SECONDS must be > 0.")
        if not self.project_path.is_dir():
            raise ValueError(f"Project path does not exist: {self.project_path}")

    def validate_for_jobs(self) -> None:
        """Raise configuration error if job runs cannot be recorded with these settings."""

        if not self.workspace_id:
            raise ValueError("Workspace id is required. Set LOCUS_WORKSPACE_ID.")
        if not self.api.api_key:
            raise ValueError("API key is required. Set LOCUS_API_KEY.")
        _validate_api_base(self.api.base_url)


def clamp_agent_count(value: int) -> int:
    return min(max(value, 1), MAX_AGENTS)


def _validate_api_base(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid API base URL: {value!r}. Expected an absolute http:// or https:// URL.",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
