"""
Survey Review Hub - Review Configuration

All runtime settings for the review pipeline, read from environment
variables (a .env file is loaded first when present).

Key settings:
- SAMPLING_PERCENTAGE: share of records finalized by the sampling gate (1-100)
- REQUIRE_NOTE_ON_REJECTION: rejections must carry a justification
- MAX_CONFLICT_RETRIES: re-validation attempts on concurrent modification
- ASSIGNMENT_STRATEGY: round_robin | first_available
"""

import os
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, List

from dotenv import load_dotenv

from .assignment import AssignmentStrategy
from .sampling import DRAW_MIN, DRAW_MAX

load_dotenv()


# =============================================================================
# DEFAULTS
# =============================================================================

DEFAULT_SAMPLING_PERCENTAGE = 30
DEFAULT_MAX_CONFLICT_RETRIES = 3
DEFAULT_STATS_CACHE_TTL_SECONDS = 300

# Hours after which a record is considered "stuck" in a review queue
STUCK_THRESHOLDS = {
    "pending_a": 48,
    "pending_b": 24,
    "pending_c": 24,
    "rejected_by_b": 48,
    "rejected_by_c": 24,
    "default": 48,
}


def _env_bool(name: str, default: bool) -> bool:
    return os.environ.get(name, str(default).lower()).lower() == "true"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def get_stuck_threshold_hours(status: str) -> int:
    return STUCK_THRESHOLDS.get(status, STUCK_THRESHOLDS["default"])


# =============================================================================
# CONFIG OBJECT
# =============================================================================

@dataclass(frozen=True)
class ReviewConfig:
    """Read-only settings consumed by the review service and API."""
    sampling_percentage: int = DEFAULT_SAMPLING_PERCENTAGE
    require_note_on_rejection: bool = True
    max_conflict_retries: int = DEFAULT_MAX_CONFLICT_RETRIES
    stats_cache_ttl_seconds: int = DEFAULT_STATS_CACHE_TTL_SECONDS
    assignment_strategy: str = AssignmentStrategy.ROUND_ROBIN
    mongo_url: str = "mongodb://localhost:27017"
    db_name: str = "survey_review_hub"
    jwt_secret: str = "survey-review-hub-secret-key"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        if not DRAW_MIN <= self.sampling_percentage <= DRAW_MAX:
            raise ValueError(
                f"sampling_percentage must be between {DRAW_MIN} and {DRAW_MAX}, got {self.sampling_percentage}"
            )
        if self.max_conflict_retries < 0:
            raise ValueError("max_conflict_retries must be >= 0")
        if self.stats_cache_ttl_seconds < 0:
            raise ValueError("stats_cache_ttl_seconds must be >= 0")
        if self.assignment_strategy not in (AssignmentStrategy.ROUND_ROBIN, AssignmentStrategy.FIRST_AVAILABLE):
            raise ValueError(f"Unknown assignment strategy: {self.assignment_strategy}")

    @classmethod
    def from_env(cls) -> "ReviewConfig":
        cors = os.environ.get("CORS_ORIGINS", "*")
        return cls(
            sampling_percentage=_env_int("SAMPLING_PERCENTAGE", DEFAULT_SAMPLING_PERCENTAGE),
            require_note_on_rejection=_env_bool("REQUIRE_NOTE_ON_REJECTION", True),
            max_conflict_retries=_env_int("MAX_CONFLICT_RETRIES", DEFAULT_MAX_CONFLICT_RETRIES),
            stats_cache_ttl_seconds=_env_int("STATS_CACHE_TTL_SECONDS", DEFAULT_STATS_CACHE_TTL_SECONDS),
            assignment_strategy=os.environ.get("ASSIGNMENT_STRATEGY", AssignmentStrategy.ROUND_ROBIN),
            mongo_url=os.environ.get("MONGO_URL", "mongodb://localhost:27017"),
            db_name=os.environ.get("DB_NAME", "survey_review_hub"),
            jwt_secret=os.environ.get("JWT_SECRET", "survey-review-hub-secret-key"),
            cors_origins=[o.strip() for o in cors.split(",") if o.strip()],
        )

    def to_public_dict(self) -> Dict[str, Any]:
        """Settings safe to show in the admin UI (no secrets or URLs)."""
        data = asdict(self)
        for secret in ("jwt_secret", "mongo_url"):
            data.pop(secret, None)
        return data
