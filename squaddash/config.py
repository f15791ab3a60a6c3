"""Squad dashboard configuration."""
import os


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


# Squad folder layout (new structure first, legacy second)
SQUAD_FOLDER_NAMES = (".squad", ".ai-team")
DEFAULT_SQUAD_FOLDER = ".squad"
ROSTER_FILENAME = "team.md"
DECISIONS_FILENAME = "decisions.md"
DECISIONS_DIRNAME = "decisions"
LOG_DIRECTORIES = ("orchestration-log", "log")
SKILLS_DIRNAME = "skills"
SKILL_FILENAME = "SKILL.md"

# Change watcher
WATCH_DEBOUNCE_MS = _env_int("SQUADDASH_WATCH_DEBOUNCE_MS", 300)
# watchfiles grouping window; kept short so WATCH_DEBOUNCE_MS is the effective debounce
WATCH_STEP_MS = _env_int("SQUADDASH_WATCH_STEP_MS", 50)

# Skill catalog
SKILL_CATALOG_TTL_SECONDS = _env_int("SQUADDASH_SKILL_CATALOG_TTL_SECONDS", 1800)
HTTP_TIMEOUT_SECONDS = _env_float("SQUADDASH_HTTP_TIMEOUT_SECONDS", 15.0)
HTTP_MAX_REDIRECTS = _env_int("SQUADDASH_HTTP_MAX_REDIRECTS", 5)
HTTP_USER_AGENT = os.getenv("SQUADDASH_HTTP_USER_AGENT", "squaddash")
AWESOME_COPILOT_URL = os.getenv(
    "SQUADDASH_AWESOME_COPILOT_URL",
    "https://raw.githubusercontent.com/github/awesome-copilot/main/docs/README.skills.md",
)
SKILLS_SH_URL = os.getenv("SQUADDASH_SKILLS_SH_URL", "https://skills.sh")

# Observability
OTEL_ENABLED = _env_bool("SQUADDASH_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("SQUADDASH_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("SQUADDASH_OTEL_SERVICE_NAME", "squaddash")
PROM_PORT = _env_int("SQUADDASH_PROM_PORT", 0)
