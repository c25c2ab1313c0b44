from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Deployment
    environment: str = "development"

    # Storage
    database_url: str = "sqlite:///./hookrelay.db"
    redis_url: Optional[str] = None

    # Dispatch
    delivery_backend: str = "thread"  # thread | rq
    rq_queue_name: str = "webhooks"
    dispatch_max_workers: int = 32
    dispatch_max_pending: int = 1000
    request_timeout_seconds: float = 10.0

    # Retry worker
    retry_worker_enabled: bool = True
    retry_interval_seconds: int = 15
    max_retry_attempts: int = 5
    batch_size: int = 10
    claim_timeout_seconds: int = 120

    # Logging
    log_level: str = "INFO"
    json_logging: bool = False

    model_config = {
        "env_prefix": "HOOKRELAY_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


settings = Settings()


def get_settings() -> Settings:
    return settings
