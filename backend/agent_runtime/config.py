from pathlib import Path

from pydantic_settings import BaseSettings

from agent_runtime.constants import DEFAULT_COMPACTION_RETAIN, DEFAULT_MAX_TOOL_ROUNDS

_ROOT_DIR = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    OPENROUTER_API_KEY: str | None = None
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENROUTER_MODEL: str = "minimax/minimax-m2.5"
    SYSTEM_PROMPT: str = (
        "You are a careful coding assistant. Use the available tools to inspect "
        "and change the workspace, and explain what you did."
    )

    ROOT_DIR: Path = _ROOT_DIR
    WORKSPACE_DIR: Path = _ROOT_DIR / "workspace"
    DATABASE_URL: str = f"sqlite+aiosqlite:///{_ROOT_DIR / 'agent_runtime.db'}"

    # Agent loop
    MAX_TOOL_ROUNDS: int = DEFAULT_MAX_TOOL_ROUNDS
    COMPACTION_RETAIN: int = DEFAULT_COMPACTION_RETAIN
    AUTO_COMPACT_TOKENS: int | None = None

    # Approval policy
    AUTO_APPROVE_READ_ONLY: bool = True
    AUTO_APPROVE_TOOLS: list[str] = []
    DISABLED_TOOLS: list[str] = []
    APPROVAL_TIMEOUT_SECONDS: float | None = None

    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    model_config = {
        "env_file": str(_ROOT_DIR / ".env"),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
