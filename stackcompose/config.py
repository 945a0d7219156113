"""
Engine settings.

Environment-based configuration shared by the topology runner, the logging
setup and the backend factory.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Environment-based configuration using pydantic-settings."""

    # Worker pool size for independent stacks
    MAX_WORKERS: int = 4

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Provisioning backend used when none is injected: 'local'
    PROVISIONING_BACKEND: str = "local"

    # Prefix for exported output parameters, e.g. /stackcompose/dev
    EXPORT_PREFIX: str = "/stackcompose"

    model_config = {"env_prefix": "STACKCOMPOSE_", "env_file": ".env", "extra": "ignore"}


settings = Settings()
