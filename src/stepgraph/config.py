# config.py
# Run configuration. Loaded once from the environment (and .env) at the
# edge, then passed explicitly. Nothing in the engine reads os.environ.

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class Verbosity(BaseModel):
    """Terminal output switches handed to the Reporter."""

    quiet: bool = False
    log_steps: bool = True
    log_tools: bool = False

    @property
    def steps(self) -> bool:
        return self.log_steps and not self.quiet

    @property
    def tools(self) -> bool:
        return self.log_tools and not self.quiet


class RunSettings(BaseModel):
    model: str = "gpt-4o-mini"
    api_key: str | None = None
    base_url: str | None = None
    max_iterations_per_step: int = Field(default=8, ge=1)
    max_tool_exec_per_step: int = Field(default=6, ge=0)
    max_nesting_depth: int = Field(default=4, ge=0)
    temperature: float = 0.2
    max_tokens: int = Field(default=800, ge=1)
    run_id: str | None = None
    runs_dir: str = "runs"
    max_input_file_mb: float = 2.0
    interactive: bool = True
    verbosity: Verbosity = Field(default_factory=Verbosity)

    @classmethod
    def from_env(cls) -> "RunSettings":
        load_dotenv()
        return cls(
            model=os.getenv("MODEL", "gpt-4o-mini"),
            api_key=os.getenv("OPENAI_API_KEY") or None,
            base_url=os.getenv("OPENAI_BASE_URL") or None,
            max_iterations_per_step=_get_env_int("MAX_ITERATIONS_PER_STEP", default=8, minimum=1),
            max_tool_exec_per_step=_get_env_int("MAX_TOOL_EXEC_PER_STEP", default=6, minimum=0),
            max_nesting_depth=_get_env_int("MAX_NESTING_DEPTH", default=4, minimum=0),
            temperature=_get_env_float("TEMPERATURE", default=0.2),
            max_tokens=_get_env_int("MAX_TOKENS", default=800, minimum=1),
            run_id=os.getenv("RUN_ID") or None,
            runs_dir=os.getenv("RUNS_DIR", "runs"),
            max_input_file_mb=_get_env_float("MAX_INPUT_FILE_MB", default=2.0),
            interactive=not _get_env_flag("NO_INTERACTIVE", default=False),
            verbosity=Verbosity(
                quiet=_get_env_flag("QUIET", default=False),
                log_steps=_get_env_flag("LOG_STEPS", default=True),
                log_tools=_get_env_flag("LOG_TOOLS", default=False),
            ),
        )


def _get_env_int(name: str, default: int, minimum: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    return parsed


def _get_env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got: {raw!r}") from exc


def _get_env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}
