import os
from collections import ChainMap
from functools import lru_cache
from typing import Any, Dict, Literal, Optional

import tomli
from dotenv import load_dotenv
from pydantic_settings import BaseSettings

CONFIG_PATH_ENV = "NEPTUNE_CONFIG"
DEFAULT_FALLBACK_RESPONSE = "I apologize, but I was unable to generate a response. Please try again."


class Settings(BaseSettings):
    """Neptune configuration settings."""

    # Environment variables
    JWT_SECRET_KEY: str
    POSTGRES_URI: Optional[str] = None

    # API configuration
    HOST: str = "localhost"
    PORT: int = 8000
    RELOAD: bool = False

    # Auth configuration
    JWT_ALGORITHM: str = "HS256"
    dev_mode: bool = False
    dev_tenant_id: str = "dev_tenant"
    dev_user_id: str = "dev_user"

    # Registered models configuration
    REGISTERED_MODELS: Dict[str, Dict[str, Any]] = {}

    # Completion configuration
    COMPLETION_MODEL: str
    COMPLETION_TEMPERATURE: float = 0.5
    COMPLETION_MAX_TOKENS: int = 1500
    REASONING_TEMPERATURE: float = 0.7
    REASONING_MAX_TOKENS: int = 2000
    FREQUENCY_PENALTY: float = 0.3
    PRESENCE_PENALTY: float = 0.2

    # Database configuration
    DATABASE_PROVIDER: Literal["postgres"] = "postgres"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_POOL_TIMEOUT: int = 10
    DB_POOL_PRE_PING: bool = True

    # Redis configuration
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379

    # Assistant configuration
    MAX_TOOL_ROUNDS: int = 5
    HISTORY_LIMIT: int = 25
    IDLE_TIMEOUT: float = 30.0
    REPLAY_CHUNK_WORDS: int = 3
    REPLAY_DELAY: float = 0.01
    FALLBACK_RESPONSE: str = DEFAULT_FALLBACK_RESPONSE
    RATE_LIMIT_REQUESTS: int = 20
    RATE_LIMIT_WINDOW: int = 60
    LEARNING_TRIGGER_MESSAGE_COUNT: int = 10

    # Response cache configuration
    CACHE_ENABLED: bool = True
    CACHE_TTL: int = 3600
    CACHE_MIN_QUERY_LENGTH: int = 10
    CACHE_MIN_RESPONSE_LENGTH: int = 50
    CACHE_MAX_ENTRIES_PER_TENANT: int = 100

    # Autonomy configuration
    AUTONOMY_MIN_CONFIDENCE: float = 0.8

    # Telemetry configuration
    TELEMETRY_ENABLED: bool = False
    SERVICE_NAME: str = "neptune"
    OTLP_ENDPOINT: Optional[str] = None
    OTLP_TIMEOUT: int = 10


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    load_dotenv(override=True)

    # Load neptune.toml (path overridable for tests and deployments)
    config_path = os.environ.get(CONFIG_PATH_ENV, "neptune.toml")
    with open(config_path, "rb") as f:
        config = tomli.load(f)

    return build_settings(config)


def build_settings(config: Dict[str, Any]) -> Settings:
    """Flatten a parsed neptune.toml into a :class:`Settings` instance."""
    em = "'{missing_value}' needed if '{field}' is set to '{value}'"

    # load api config
    api_config = {}
    if "api" in config:
        api_config = {
            "HOST": config["api"].get("host", "localhost"),
            "PORT": int(config["api"].get("port", 8000)),
            "RELOAD": bool(config["api"].get("reload", False)),
        }

    # load auth config
    auth = config.get("auth", {})
    auth_config = {
        "JWT_ALGORITHM": auth.get("jwt_algorithm", "HS256"),
        "JWT_SECRET_KEY": os.environ.get("JWT_SECRET_KEY", "dev-secret-key"),  # Default for dev mode
        "dev_mode": auth.get("dev_mode", False),
        "dev_tenant_id": auth.get("dev_tenant_id", "dev_tenant"),
        "dev_user_id": auth.get("dev_user_id", "dev_user"),
    }

    # Only require JWT_SECRET_KEY in non-dev mode
    if not auth_config["dev_mode"] and "JWT_SECRET_KEY" not in os.environ:
        raise ValueError("JWT_SECRET_KEY is required when dev_mode is disabled")

    # Load registered models if available
    registered_models = {}
    if "registered_models" in config:
        registered_models = {"REGISTERED_MODELS": config["registered_models"]}

    # load completion config
    completion = config.get("completion", {})
    if "model" not in completion:
        raise ValueError("'model' is required in the completion configuration")
    completion_config = {
        "COMPLETION_MODEL": completion["model"],
        "COMPLETION_TEMPERATURE": completion.get("temperature", 0.5),
        "COMPLETION_MAX_TOKENS": completion.get("max_tokens", 1500),
        "REASONING_TEMPERATURE": completion.get("reasoning_temperature", 0.7),
        "REASONING_MAX_TOKENS": completion.get("reasoning_max_tokens", 2000),
        "FREQUENCY_PENALTY": completion.get("frequency_penalty", 0.3),
        "PRESENCE_PENALTY": completion.get("presence_penalty", 0.2),
    }

    # load database config
    database = config.get("database", {})
    database_config = {
        "DATABASE_PROVIDER": database.get("provider", "postgres"),
        "DB_POOL_SIZE": database.get("pool_size", 20),
        "DB_MAX_OVERFLOW": database.get("max_overflow", 30),
        "DB_POOL_RECYCLE": database.get("pool_recycle", 3600),
        "DB_POOL_TIMEOUT": database.get("pool_timeout", 10),
        "DB_POOL_PRE_PING": database.get("pool_pre_ping", True),
    }
    if database_config["DATABASE_PROVIDER"] != "postgres":
        prov = database_config["DATABASE_PROVIDER"]
        raise ValueError(f"Unknown database provider selected: '{prov}'")

    if "POSTGRES_URI" in os.environ:
        database_config.update({"POSTGRES_URI": os.environ["POSTGRES_URI"]})
    else:
        msg = em.format(missing_value="POSTGRES_URI", field="database.provider", value="postgres")
        raise ValueError(msg)

    # load redis config
    redis_config = {}
    if "redis" in config:
        redis_config = {
            "REDIS_HOST": config["redis"].get("host", "localhost"),
            "REDIS_PORT": int(config["redis"].get("port", 6379)),
        }

    # load assistant config
    assistant_config = {}
    if "assistant" in config:
        assistant = config["assistant"]
        assistant_config = {
            "MAX_TOOL_ROUNDS": assistant.get("max_tool_rounds", 5),
            "HISTORY_LIMIT": assistant.get("history_limit", 25),
            "IDLE_TIMEOUT": assistant.get("idle_timeout", 30.0),
            "REPLAY_CHUNK_WORDS": assistant.get("replay_chunk_words", 3),
            "REPLAY_DELAY": assistant.get("replay_delay", 0.01),
            "FALLBACK_RESPONSE": assistant.get("fallback_response", DEFAULT_FALLBACK_RESPONSE),
            "RATE_LIMIT_REQUESTS": assistant.get("rate_limit_requests", 20),
            "RATE_LIMIT_WINDOW": assistant.get("rate_limit_window", 60),
            "LEARNING_TRIGGER_MESSAGE_COUNT": assistant.get("learning_trigger_message_count", 10),
        }
        if assistant_config["MAX_TOOL_ROUNDS"] < 1:
            raise ValueError("'max_tool_rounds' must be at least 1")

    # load cache config
    cache_config = {}
    if "cache" in config:
        cache_config = {
            "CACHE_ENABLED": config["cache"].get("enabled", True),
            "CACHE_TTL": config["cache"].get("ttl", 3600),
            "CACHE_MIN_QUERY_LENGTH": config["cache"].get("min_query_length", 10),
            "CACHE_MIN_RESPONSE_LENGTH": config["cache"].get("min_response_length", 50),
            "CACHE_MAX_ENTRIES_PER_TENANT": config["cache"].get("max_entries_per_tenant", 100),
        }

    # load autonomy config
    autonomy_config = {}
    if "autonomy" in config:
        autonomy_config = {"AUTONOMY_MIN_CONFIDENCE": config["autonomy"].get("min_confidence", 0.8)}

    # load telemetry config
    telemetry_config = {}
    if "telemetry" in config:
        telemetry_config = {
            "TELEMETRY_ENABLED": config["telemetry"].get("enabled", False),
            "SERVICE_NAME": config["telemetry"].get("service_name", "neptune"),
            "OTLP_ENDPOINT": config["telemetry"].get("otlp_endpoint"),
            "OTLP_TIMEOUT": config["telemetry"].get("otlp_timeout", 10),
        }
        if telemetry_config["TELEMETRY_ENABLED"] and not telemetry_config["OTLP_ENDPOINT"]:
            msg = em.format(missing_value="otlp_endpoint", field="telemetry.enabled", value="true")
            raise ValueError(msg)

    settings_dict = dict(
        ChainMap(
            api_config,
            auth_config,
            registered_models,
            completion_config,
            database_config,
            redis_config,
            assistant_config,
            cache_config,
            autonomy_config,
            telemetry_config,
        )
    )

    return Settings(**settings_dict)
