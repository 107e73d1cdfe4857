from datetime import timedelta

import pytest
from pydantic import ValidationError

from exam_awards.config import AwardSettings


def test_defaults():
    settings = AwardSettings()
    assert settings.prize_amounts == [10, 7, 3]
    assert settings.award_delay == timedelta(minutes=10)
    assert settings.similarity_threshold == 0.6
    assert settings.min_token_length == 2
    assert settings.prize_positions == 3


def test_from_env_overrides():
    settings = AwardSettings.from_env(
        {
            "PRIZE_AMOUNTS": "20, 10,5",
            "AWARD_DELAY_MINUTES": "0",
            "OPEN_ENDED_SIMILARITY_THRESHOLD": "0.75",
            "MIN_TOKEN_LENGTH": "3",
            "DATABASE_URL": "sqlite://",
        }
    )
    assert settings.prize_amounts == [20, 10, 5]
    assert settings.award_delay == timedelta(0)
    assert settings.similarity_threshold == 0.75
    assert settings.min_token_length == 3
    assert settings.database_url == "sqlite://"


def test_from_env_ignores_blank_values():
    assert AwardSettings.from_env({"PRIZE_AMOUNTS": " ", "MIN_TOKEN_LENGTH": ""}) == AwardSettings()


@pytest.mark.parametrize("amounts", [[], [10, 0, 3], [10, -1]])
def test_prize_amounts_must_be_positive(amounts):
    with pytest.raises(ValidationError):
        AwardSettings(prize_amounts=amounts)
