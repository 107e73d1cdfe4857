import os
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_PRIZE_AMOUNTS = [10.0, 7.0, 3.0]  # AZN for 1st, 2nd, 3rd
DEFAULT_AWARD_DELAY_MINUTES = 10
DEFAULT_DATABASE_URL = "sqlite:///./exam_awards.db"


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every stored datetime uses."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AwardSettings(BaseModel):
    prize_amounts: List[float] = Field(default_factory=lambda: list(DEFAULT_PRIZE_AMOUNTS), min_length=1)
    award_delay: timedelta = timedelta(minutes=DEFAULT_AWARD_DELAY_MINUTES)
    similarity_threshold: float = Field(default=0.6, gt=0.0, le=1.0)
    min_token_length: int = Field(default=2, ge=0)
    # correct_answer longer than this is an option id, otherwise a legacy index
    option_id_min_length: int = Field(default=15, ge=0)
    database_url: str = DEFAULT_DATABASE_URL

    @field_validator("prize_amounts")
    @classmethod
    def _positive_amounts(cls, value: List[float]) -> List[float]:
        if any(amount <= 0 for amount in value):
            raise ValueError("prize amounts must be positive")
        return value

    @property
    def prize_positions(self) -> int:
        return len(self.prize_amounts)

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "AwardSettings":
        """
        Build settings from environment variables; unset ones keep their defaults.
        PRIZE_AMOUNTS is comma separated, e.g. "10,7,3".
        """
        env = os.environ if environ is None else environ
        values: dict = {}

        raw_amounts = (env.get("PRIZE_AMOUNTS") or "").strip()
        if raw_amounts:
            values["prize_amounts"] = [float(p) for p in raw_amounts.split(",") if p.strip()]

        raw_delay = (env.get("AWARD_DELAY_MINUTES") or "").strip()
        if raw_delay:
            values["award_delay"] = timedelta(minutes=float(raw_delay))

        raw_threshold = (env.get("OPEN_ENDED_SIMILARITY_THRESHOLD") or "").strip()
        if raw_threshold:
            values["similarity_threshold"] = float(raw_threshold)

        raw_min_len = (env.get("MIN_TOKEN_LENGTH") or "").strip()
        if raw_min_len:
            values["min_token_length"] = int(raw_min_len)

        raw_id_len = (env.get("OPTION_ID_MIN_LENGTH") or "").strip()
        if raw_id_len:
            values["option_id_min_length"] = int(raw_id_len)

        db_url = (env.get("DATABASE_URL") or "").strip()
        if db_url:
            values["database_url"] = db_url

        return cls(**values)
