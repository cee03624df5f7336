from functools import lru_cache
from typing import Optional

from pydantic import validator
from pydantic_settings import BaseSettings

# SQS SendMessageBatch accepts at most 10 entries per call.
MAX_GROUP_SIZE = 10


class PublisherSettings(BaseSettings):
    SQS_QUEUE_URL: str = ""
    AWS_REGION: Optional[str] = None
    AWS_ENDPOINT_URL: Optional[str] = None

    GROUP_SIZE: int = MAX_GROUP_SIZE
    MAX_RETRIES: int = 2
    BASE_DELAY_MS: int = 1000
    BACKOFF_MULTIPLIER: float = 2.0

    CIRCUIT_BREAKER_FAILURE_RATIO: float = 0.5
    CIRCUIT_BREAKER_MINIMUM_THROUGHPUT: int = 3
    CIRCUIT_BREAKER_SAMPLING_DURATION_SEC: float = 60.0
    CIRCUIT_BREAKER_BREAK_DURATION_SEC: float = 30.0

    AUDIT_DATABASE_URL: Optional[str] = None
    AUDIT_POOL_MAX: int = 5

    LOG_LEVEL: str = "INFO"

    @validator("GROUP_SIZE")
    def _group_size_within_transport_limit(cls, v):
        if not 1 <= v <= MAX_GROUP_SIZE:
            raise ValueError(f"GROUP_SIZE must be between 1 and {MAX_GROUP_SIZE}")
        return v

    @validator("MAX_RETRIES", "BASE_DELAY_MS")
    def _non_negative(cls, v):
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @validator("CIRCUIT_BREAKER_MINIMUM_THROUGHPUT")
    def _minimum_throughput(cls, v):
        if v < 1:
            raise ValueError("CIRCUIT_BREAKER_MINIMUM_THROUGHPUT must be >= 1")
        return v

    @validator("CIRCUIT_BREAKER_SAMPLING_DURATION_SEC", "CIRCUIT_BREAKER_BREAK_DURATION_SEC")
    def _positive_duration(cls, v):
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @validator("BACKOFF_MULTIPLIER")
    def _multiplier(cls, v):
        if v < 1.0:
            raise ValueError("BACKOFF_MULTIPLIER must be >= 1.0")
        return v

    @validator("CIRCUIT_BREAKER_FAILURE_RATIO")
    def _ratio(cls, v):
        if not 0.0 < v <= 1.0:
            raise ValueError("CIRCUIT_BREAKER_FAILURE_RATIO must be in (0, 1]")
        return v

    class Config:
        env_prefix = "ITEM_PUBLISHER_"
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_settings() -> PublisherSettings:
    return PublisherSettings()
