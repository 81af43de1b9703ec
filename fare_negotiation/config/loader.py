# fare_negotiation/config/loader.py
"""
Загрузчик конфигурации сервиса торга.
Единственный источник истины — config/config.json.
Секреты и адреса переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации (можно переопределить CONFIG_PATH)."""
    override = os.getenv("CONFIG_PATH")
    if override:
        return Path(override)
    return get_project_root() / "config" / "config.json"


def load_config_json(path: Path | None = None) -> dict[str, Any]:
    """Загружает config.json и возвращает словарь без ключей-комментариев."""
    config_path = path or get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return {k: v for k, v in data.items() if not k.startswith("_comment_")}


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "fare_negotiation"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    COMPONENT_MODE: str = "all"


class DeploymentSettings(BaseModel):
    """Настройки развертывания."""
    NEGOTIATION_SERVICE_HOST: str = "0.0.0.0"
    NEGOTIATION_SERVICE_PORT: int = 8092
    NEGOTIATION_SERVICE_INSTANCES_COUNT: int = 1
    SWEEPER_INSTANCES_COUNT: int = 1


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/negotiation.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760

    @field_validator("LOG_FORMAT")
    @classmethod
    def check_format(cls, v: str) -> str:
        """Допустимы только json и colored."""
        if v not in ("json", "colored"):
            raise ValueError(f"Неизвестный формат логов: {v}")
        return v


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "negotiation"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 5
    DB_MAX_POOL_SIZE: int = 20
    DB_COMMAND_TIMEOUT: int = 30
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_DELAY: float = 0.1

    @field_validator("DB_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("DB_PASSWORD", "")
        return v

    @property
    def dsn(self) -> str:
        """Возвращает DSN для подключения к PostgreSQL."""
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


class RedisSettings(BaseModel):
    """Настройки Redis."""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "fare"
    REDIS_MAX_CONNECTIONS: int = 50

    @field_validator("REDIS_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("REDIS_PASSWORD", "")
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class RedisTTLSettings(BaseModel):
    """TTL снапшотов в кэше (секунды)."""
    SNAPSHOT_GRACE_TTL: int = 60
    TERMINAL_SNAPSHOT_TTL: int = 300


class RabbitMQSettings(BaseModel):
    """Настройки RabbitMQ."""
    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"
    RABBITMQ_EXCHANGE: str = "negotiation.events"

    @field_validator("RABBITMQ_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Пароль из окружения имеет приоритет."""
        env_pass = os.getenv("RABBITMQ_PASSWORD", "")
        if env_pass:
            return env_pass
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к RabbitMQ."""
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}{self.RABBITMQ_VHOST}"
        )


class PricingSettings(BaseModel):
    """Настройки клиента сервиса ценообразования."""
    PRICING_SERVICE_URL: str = "http://pricing_service:8086"
    PRICING_TIMEOUT_SECONDS: float = 3.0
    MIN_PRICE_MULTIPLIER: float = 0.7
    MAX_PRICE_MULTIPLIER: float = 1.5

    @model_validator(mode="after")
    def check_multipliers(self) -> "PricingSettings":
        """Нижний множитель не может превышать верхний."""
        if self.MIN_PRICE_MULTIPLIER <= 0 or self.MIN_PRICE_MULTIPLIER > self.MAX_PRICE_MULTIPLIER:
            raise ValueError("MIN_PRICE_MULTIPLIER должен быть в (0, MAX_PRICE_MULTIPLIER]")
        return self


class NegotiationSettings(BaseModel):
    """Политика торга."""
    NEGOTIATION_DEFAULT_TTL_SECONDS: int = Field(default=120, gt=0)
    NEGOTIATION_DEADLINE_INCREMENT_SECONDS: int = Field(default=30, ge=0)
    NEGOTIATION_MAX_LIFETIME_SECONDS: int = Field(default=600, gt=0)
    NEGOTIATION_MAX_CAS_RETRIES: int = Field(default=3, ge=1)
    NEGOTIATION_REQUEST_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0)
    NEGOTIATION_EVENT_PUBLISH_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0)
    NEGOTIATION_SWEEP_INTERVAL_SECONDS: float = Field(default=10.0, gt=0)
    NEGOTIATION_SWEEP_BATCH_SIZE: int = Field(default=500, gt=0)
    NEGOTIATION_PUSH_WRITE_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    NEGOTIATION_PUSH_RELAY_ENABLED: bool = True
    NEGOTIATION_ONE_ACTIVE_SESSION_PER_RIDER: bool = False
    NEGOTIATION_MAX_ACTIVE_SESSIONS_PER_DRIVER: int = Field(default=0, ge=0)


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

def _pick(data: dict[str, Any], model: type[BaseModel], env_keys: tuple[str, ...] = ()) -> dict[str, Any]:
    """
    Выбирает из плоского config.json поля конкретной секции.
    Для ключей из env_keys значение из окружения имеет приоритет.
    """
    values = {name: data[name] for name in model.model_fields if name in data}
    for key in env_keys:
        env_value = os.getenv(key)
        if env_value is not None and env_value != "":
            values[key] = env_value
    return values


class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    system: SystemSettings = Field(default_factory=SystemSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    redis_ttl: RedisTTLSettings = Field(default_factory=RedisTTLSettings)
    rabbitmq: RabbitMQSettings = Field(default_factory=RabbitMQSettings)
    pricing: PricingSettings = Field(default_factory=PricingSettings)
    negotiation: NegotiationSettings = Field(default_factory=NegotiationSettings)

    @classmethod
    def from_config_json(cls, path: Path | None = None) -> "Settings":
        """
        Создаёт объект Settings из config.json.
        Секреты и адреса инфраструктуры переопределяются из переменных окружения.
        """
        data = load_config_json(path)

        return cls(
            system=SystemSettings(**_pick(data, SystemSettings, ("COMPONENT_MODE", "ENVIRONMENT"))),
            deployment=DeploymentSettings(
                **_pick(data, DeploymentSettings, ("NEGOTIATION_SERVICE_HOST", "NEGOTIATION_SERVICE_PORT"))
            ),
            logging=LoggingSettings(**_pick(data, LoggingSettings, ("LOG_LEVEL", "LOG_FORMAT"))),
            database=DatabaseSettings(
                **_pick(data, DatabaseSettings, ("DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD"))
            ),
            redis=RedisSettings(**_pick(data, RedisSettings, ("REDIS_HOST", "REDIS_PORT", "REDIS_PASSWORD"))),
            redis_ttl=RedisTTLSettings(**_pick(data, RedisTTLSettings)),
            rabbitmq=RabbitMQSettings(
                **_pick(
                    data,
                    RabbitMQSettings,
                    ("RABBITMQ_HOST", "RABBITMQ_PORT", "RABBITMQ_USER", "RABBITMQ_PASSWORD"),
                )
            ),
            pricing=PricingSettings(**_pick(data, PricingSettings, ("PRICING_SERVICE_URL",))),
            negotiation=NegotiationSettings(**_pick(data, NegotiationSettings)),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Перед чтением конфига подгружает .env из корня проекта.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()
