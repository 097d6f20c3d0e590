from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str | None = None

    ANTHROPIC_API_KEY: str = ""
    ANTHROPIC_BASE_URL: str = "https://api.anthropic.com"

    OPENAI_COMPATIBLE_API_KEY: str = ""
    OPENAI_COMPATIBLE_BASE_URL: str = "https://api.groq.com/v1"

    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_API_KEY: str = ""

    DEFAULT_PROVIDER: str = "openai"
    DEFAULT_MODEL: str = "gpt-4o-mini"

    ENABLE_SUBAGENTS: bool = True

    # Tracing
    TRACE_PATH: Path | None = None
    TRACE_APPEND: bool = False

    # "continue" keeps consuming after a mid-stream error, "abort" fails the agent
    STREAM_ERROR_POLICY: str = "continue"

    HTTP_TIMEOUT_SECONDS: float = 120.0
    LOG_LEVEL: str = "INFO"

    ROOT_DIR: Path = Path(__file__).resolve().parent.parent.parent
    TEMPLATES_DIR: Path = Path(__file__).resolve().parent.parent.parent / "templates"

    model_config = {
        "env_file": str(Path(__file__).resolve().parent.parent.parent / ".env"),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
