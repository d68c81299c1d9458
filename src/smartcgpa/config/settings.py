from dataclasses import dataclass
import os
from dotenv import load_dotenv

from smartcgpa.core.grading import DEFAULT_BUCKETS, GradingConfig


load_dotenv()


def _split_csv(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    db_path: str = os.getenv("SMARTCGPA_DB_PATH", "data/smartcgpa.db")

    max_internal: float = float(os.getenv("SMARTCGPA_MAX_INTERNAL", "50"))
    max_external: float = float(os.getenv("SMARTCGPA_MAX_EXTERNAL", "100"))
    rounding_digits: int = int(os.getenv("SMARTCGPA_ROUNDING_DIGITS", "2"))
    planner_max_iterations: int = int(os.getenv("SMARTCGPA_PLANNER_MAX_ITERATIONS", "1000"))

    log_level: str = os.getenv("SMARTCGPA_LOG_LEVEL", "INFO")
    host: str = os.getenv("HOST", "127.0.0.1")
    port: int = int(os.getenv("PORT", "8000"))

    cors_allowed_origins: tuple[str, ...] = _split_csv(
        os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173")
    )

    def grading_config(self) -> GradingConfig:
        return GradingConfig(
            max_internal=self.max_internal,
            max_external=self.max_external,
            buckets=DEFAULT_BUCKETS,
            rounding_digits=self.rounding_digits,
        )


settings = Settings()
