"""
Configuration Management System for HomeGuard
Handles environment-based configuration, validation, and system modes.
"""
import os
import json
from enum import Enum
from typing import Optional, Dict, Any, List
from pathlib import Path
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Load .env file
load_dotenv()

from exceptions import (
    ConfigurationError,
    InvalidModeError
)


class SystemMode(str, Enum):
    """Operating modes for the system."""
    PRODUCTION = "PRODUCTION"
    DEMO = "DEMO"
    MOCK = "MOCK"


@dataclass
class DatabaseConfig:
    """Alert/rule database settings."""
    path: str = "homeguard.db"
    connection_timeout: int = 30
    max_connections: int = 5


@dataclass
class StoreConfig:
    """Rule persistence store settings."""
    backend: str = "sqlite"  # sqlite, hosted
    hosted_url: Optional[str] = None
    hosted_api_key: Optional[str] = None
    hosted_table: str = "triggers"
    timeout_seconds: float = 10.0
    max_retries: int = 2
    circuit_failure_threshold: int = 3
    circuit_recovery_seconds: float = 30.0
    rules_path: str = "rules"
    seed_from_files: bool = True


@dataclass
class EngineConfig:
    """Evaluation loop and dispatcher settings."""
    queue_size: int = 1000
    workers: int = 1
    action_timeout_seconds: float = 5.0
    snapshot_refresh_seconds: float = 60.0
    police_auto_confirm: bool = False
    confirmation_timeout_minutes: int = 10
    confirmation_retention_minutes: int = 60
    device_liveness_seconds: float = 300.0
    recent_reports: int = 100


@dataclass
class APIConfig:
    """API configuration settings."""
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    admin_username: str = "admin"
    admin_password: str = "secret"

    # Security
    jwt_secret_key: Optional[str] = None
    jwt_algorithm: str = "HS256"
    jwt_expiration_hours: int = 24


@dataclass
class SystemConfig:
    """System-wide configuration settings."""
    mode: SystemMode = SystemMode.DEMO
    environment: str = "development"
    log_level: str = "INFO"
    version: str = "1.0.0"
    timezone: Optional[str] = None


@dataclass
class NotificationConfig:
    """Action integration endpoints."""
    webhook_url: Optional[str] = None
    webhook_actions: List[str] = field(default_factory=list)
    webhook_timeout_seconds: float = 5.0


@dataclass
class HomeGuardConfig:
    """Complete configuration for the HomeGuard system."""
    system: SystemConfig = field(default_factory=SystemConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    api: APIConfig = field(default_factory=APIConfig)
    notification: NotificationConfig = field(default_factory=NotificationConfig)

    def validate(self) -> None:
        """
        Validate configuration settings.

        Raises:
            ConfigurationError: If configuration is invalid
            InvalidModeError: If system mode is invalid
        """
        if self.system.mode not in [SystemMode.PRODUCTION, SystemMode.DEMO, SystemMode.MOCK]:
            raise InvalidModeError(
                f"Invalid system mode: {self.system.mode}",
                component="ConfigManager"
            )

        if self.store.backend not in ("sqlite", "hosted"):
            raise ConfigurationError(
                f"Unknown rule store backend: {self.store.backend}",
                component="ConfigManager"
            )

        if self.store.backend == "hosted" and not self.store.hosted_url:
            raise ConfigurationError(
                "HOMEGUARD_STORE_URL is required for the hosted rule store",
                component="ConfigManager",
                context={"backend": self.store.backend}
            )

        if self.engine.queue_size < 1:
            raise ConfigurationError(
                f"Queue size must be positive, got {self.engine.queue_size}",
                component="ConfigManager"
            )

        if self.engine.workers < 1:
            raise ConfigurationError(
                f"Worker count must be positive, got {self.engine.workers}",
                component="ConfigManager"
            )

        if self.engine.action_timeout_seconds <= 0:
            raise ConfigurationError(
                f"Action timeout must be positive, got {self.engine.action_timeout_seconds}",
                component="ConfigManager"
            )

        if self.system.mode == SystemMode.PRODUCTION and not self.api.jwt_secret_key:
            raise ConfigurationError(
                "JWT_SECRET_KEY is required in PRODUCTION mode",
                component="ConfigManager",
                context={"mode": self.system.mode.value}
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (excluding sensitive data)."""
        return {
            "system": {
                "mode": self.system.mode.value,
                "environment": self.system.environment,
                "version": self.system.version
            },
            "database": {
                "path": self.database.path,
                "max_connections": self.database.max_connections
            },
            "store": {
                "backend": self.store.backend,
                "hosted_table": self.store.hosted_table,
                "has_api_key": bool(self.store.hosted_api_key),
                "rules_path": self.store.rules_path
            },
            "engine": {
                "queue_size": self.engine.queue_size,
                "workers": self.engine.workers,
                "action_timeout_seconds": self.engine.action_timeout_seconds,
                "snapshot_refresh_seconds": self.engine.snapshot_refresh_seconds,
                "police_auto_confirm": self.engine.police_auto_confirm
            }
        }


def _as_bool(value: str) -> bool:
    return value.lower() in ('true', '1', 'yes', 'on')


class ConfigManager:
    """
    Manages configuration loading from environment variables and files.
    Implements fail-fast principle for invalid configurations.
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Optional path to JSON config file
        """
        self.config_path = config_path
        self._config: Optional[HomeGuardConfig] = None

    def load(self) -> HomeGuardConfig:
        """
        Load configuration from environment and optional file.
        Priority: Environment Variables > Config File > Defaults

        Returns:
            HomeGuardConfig: Validated configuration

        Raises:
            ConfigurationError: If configuration is invalid
        """
        config = HomeGuardConfig()

        if self.config_path:
            config = self._load_from_file(self.config_path)

        config = self._load_from_environment(config)

        config.validate()

        self._config = config
        return config

    def _load_from_file(self, file_path: str) -> HomeGuardConfig:
        """
        Load configuration from JSON file.

        Args:
            file_path: Path to configuration file

        Returns:
            HomeGuardConfig: Configuration object

        Raises:
            ConfigurationError: If file cannot be loaded
        """
        path = Path(file_path)
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {file_path}",
                component="ConfigManager"
            )

        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Invalid JSON in configuration file: {e}",
                component="ConfigManager"
            )

        config = HomeGuardConfig()
        sections = {
            'system': config.system,
            'database': config.database,
            'store': config.store,
            'engine': config.engine,
            'api': config.api,
            'notification': config.notification,
        }

        try:
            for section_name, section in sections.items():
                for key, value in data.get(section_name, {}).items():
                    if not hasattr(section, key):
                        raise ConfigurationError(
                            f"Unknown setting: {section_name}.{key}",
                            component="ConfigManager"
                        )
                    setattr(section, key, value)

            if isinstance(config.system.mode, str):
                config.system.mode = SystemMode(config.system.mode.upper())
        except ValueError as e:
            raise ConfigurationError(
                f"Error loading configuration file: {e}",
                component="ConfigManager"
            )

        return config

    def _load_from_environment(self, config: HomeGuardConfig) -> HomeGuardConfig:
        """
        Override configuration with environment variables.

        Args:
            config: Base configuration to override

        Returns:
            HomeGuardConfig: Configuration with environment overrides
        """
        # System mode
        mode_str = os.getenv('HOMEGUARD_MODE', '').upper()
        if mode_str:
            try:
                config.system.mode = SystemMode(mode_str)
            except ValueError:
                raise InvalidModeError(
                    f"Invalid HOMEGUARD_MODE: {mode_str}",
                    component="ConfigManager"
                )

        config.system.environment = os.getenv('HOMEGUARD_ENVIRONMENT', config.system.environment)

        log_level = os.getenv('LOG_LEVEL')
        if log_level:
            config.system.log_level = log_level.upper()

        tz = os.getenv('HOMEGUARD_TIMEZONE')
        if tz:
            config.system.timezone = tz

        # Database
        db_path = os.getenv('HOMEGUARD_DB_PATH')
        if db_path:
            config.database.path = db_path

        # Rule store
        backend = os.getenv('HOMEGUARD_STORE_BACKEND')
        if backend:
            config.store.backend = backend.lower()

        store_url = os.getenv('HOMEGUARD_STORE_URL')
        if store_url:
            config.store.hosted_url = store_url

        store_key = os.getenv('HOMEGUARD_STORE_API_KEY')
        if store_key:
            config.store.hosted_api_key = store_key

        store_table = os.getenv('HOMEGUARD_STORE_TABLE')
        if store_table:
            config.store.hosted_table = store_table

        rules_path = os.getenv('RULES_PATH')
        if rules_path:
            config.store.rules_path = rules_path

        # Engine
        queue_size = os.getenv('HOMEGUARD_QUEUE_SIZE')
        if queue_size:
            try:
                config.engine.queue_size = int(queue_size)
            except ValueError:
                raise ConfigurationError(
                    f"Invalid queue size: {queue_size}",
                    component="ConfigManager"
                )

        workers = os.getenv('HOMEGUARD_WORKERS')
        if workers:
            try:
                config.engine.workers = int(workers)
            except ValueError:
                raise ConfigurationError(
                    f"Invalid worker count: {workers}",
                    component="ConfigManager"
                )

        action_timeout = os.getenv('HOMEGUARD_ACTION_TIMEOUT')
        if action_timeout:
            try:
                config.engine.action_timeout_seconds = float(action_timeout)
            except ValueError:
                raise ConfigurationError(
                    f"Invalid action timeout: {action_timeout}",
                    component="ConfigManager"
                )

        refresh = os.getenv('HOMEGUARD_SNAPSHOT_REFRESH')
        if refresh:
            try:
                config.engine.snapshot_refresh_seconds = float(refresh)
            except ValueError:
                raise ConfigurationError(
                    f"Invalid snapshot refresh interval: {refresh}",
                    component="ConfigManager"
                )

        police_auto = os.getenv('HOMEGUARD_POLICE_AUTO_CONFIRM')
        if police_auto:
            config.engine.police_auto_confirm = _as_bool(police_auto)

        # API & Server
        api_host = os.getenv('API_HOST')
        if api_host:
            config.api.host = api_host

        api_port = os.getenv('API_PORT')
        if api_port:
            config.api.port = int(api_port)

        cors = os.getenv('CORS_ORIGINS')
        if cors:
            config.api.cors_origins = [o.strip() for o in cors.split(',')]

        admin_username = os.getenv('ADMIN_USERNAME')
        if admin_username:
            config.api.admin_username = admin_username

        admin_password = os.getenv('ADMIN_PASSWORD')
        if admin_password:
            config.api.admin_password = admin_password

        # Security
        jwt_secret = os.getenv('JWT_SECRET_KEY')
        if jwt_secret:
            config.api.jwt_secret_key = jwt_secret

        jwt_algo = os.getenv('JWT_ALGORITHM')
        if jwt_algo:
            config.api.jwt_algorithm = jwt_algo

        jwt_exp = os.getenv('JWT_EXPIRATION_HOURS')
        if jwt_exp:
            config.api.jwt_expiration_hours = int(jwt_exp)

        # Integrations
        webhook_url = os.getenv('HOMEGUARD_WEBHOOK_URL')
        if webhook_url:
            config.notification.webhook_url = webhook_url

        webhook_actions = os.getenv('HOMEGUARD_WEBHOOK_ACTIONS')
        if webhook_actions:
            config.notification.webhook_actions = [
                a.strip().lower() for a in webhook_actions.split(',') if a.strip()
            ]

        return config

    @property
    def config(self) -> HomeGuardConfig:
        """
        Get current configuration.

        Raises:
            ConfigurationError: If configuration not loaded
        """
        if self._config is None:
            raise ConfigurationError(
                "Configuration not loaded. Call load() first.",
                component="ConfigManager"
            )
        return self._config


# Singleton instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager(config_path: Optional[str] = None) -> ConfigManager:
    """
    Get singleton ConfigManager instance.

    Args:
        config_path: Optional path to configuration file

    Returns:
        ConfigManager: Singleton instance
    """
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(config_path)
    return _config_manager


def load_config(config_path: Optional[str] = None) -> HomeGuardConfig:
    """
    Load and validate configuration.

    Args:
        config_path: Optional path to configuration file

    Returns:
        HomeGuardConfig: Validated configuration

    Raises:
        ConfigurationError: If configuration is invalid
    """
    manager = get_config_manager(config_path)
    return manager.load()
