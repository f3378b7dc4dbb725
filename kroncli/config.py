import os
import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from kroncli.models import BackendConfig
from kroncli.backup.errors import ConfigError


class Config:
    """Base configuration"""

    # Config file
    CONFIG_PATH = os.environ.get('KRONCLI_CONFIG') or 'config.toml'

    # Output
    BACKUP_DIR = os.environ.get('BACKUP_DIR') or '/backups'
    STAGING_DIR = os.environ.get('STAGING_DIR')  # None = fresh temp dir per run
    ARCHIVE_PREFIX = os.environ.get('ARCHIVE_PREFIX') or 'backup'
    KEEP_STAGING = os.environ.get('KEEP_STAGING', 'false').lower() == 'true'

    # Execution
    BACKUP_TIMEOUT = int(os.environ.get('BACKUP_TIMEOUT') or 3600)  # seconds per backend
    PARALLEL = os.environ.get('PARALLEL', 'false').lower() == 'true'
    MAX_WORKERS = int(os.environ.get('MAX_WORKERS') or 4)

    # Logging
    LOG_DIR = os.environ.get('LOG_DIR') or '/var/log/kroncli'
    LOG_LEVEL = os.environ.get('LOG_LEVEL')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    BACKUP_DIR = os.path.join(DATA_DIR, 'backups')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


def get_config(config_name: Optional[str] = None):
    if config_name is None:
        config_name = os.environ.get('KRONCLI_ENV', 'production')
    if config_name not in config:
        raise ConfigError(
            f"Unknown environment: {config_name}. Valid options: {list(config.keys())}"
        )
    return config[config_name]


@dataclass
class StorageSettings:
    """Where the finished archive goes"""
    type: str = 'local'
    path: Optional[str] = None
    bucket: Optional[str] = None
    region: str = 'us-east-1'
    access_key: Optional[str] = field(default=None, repr=False)
    secret_key: Optional[str] = field(default=None, repr=False)
    prefix: str = 'kroncli'

    @property
    def uses_s3(self) -> bool:
        return self.type == 's3'


@dataclass
class RunConfig:
    """Parsed configuration file merged over environment defaults"""
    backends: Dict[str, BackendConfig]
    storage: StorageSettings
    output_dir: str
    staging_dir: Optional[str]
    archive_prefix: str
    parallel: bool
    max_workers: int
    timeout: Optional[float]
    keep_staging: bool


def load_config_file(path: str, defaults=None) -> RunConfig:
    """
    Load a TOML or JSON configuration file.

    Args:
        path: Path to the file (.toml or .json)
        defaults: Config class supplying values the file leaves out

    Returns:
        RunConfig

    Raises:
        ConfigError: If the file is missing, unparseable or malformed
    """
    defaults = defaults or get_config()
    config_path = Path(path).expanduser()

    if not config_path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    try:
        if config_path.suffix == '.json':
            with open(config_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        else:
            with open(config_path, 'rb') as f:
                data = tomllib.load(f)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to parse config {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read config {path}: {e}")

    return parse_config(data, defaults)


def parse_config(data: Dict[str, Any], defaults=None) -> RunConfig:
    """Build a RunConfig from an already-decoded mapping."""
    defaults = defaults or get_config()

    databases = data.get('databases') or {}
    if not isinstance(databases, dict):
        raise ConfigError("'databases' must be a table of backend sections")

    backends = {}
    for type_id, section in databases.items():
        if not isinstance(section, dict):
            raise ConfigError(f"Section databases.{type_id} must be a table", backend=type_id)
        try:
            backends[type_id] = BackendConfig.from_dict(section)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid databases.{type_id} section: {e}", backend=type_id)

    storage_data = data.get('storage') or {}
    storage = StorageSettings(
        type=storage_data.get('type') or storage_data.get('type_') or 'local',
        path=storage_data.get('path'),
        bucket=storage_data.get('bucket'),
        region=storage_data.get('region') or 'us-east-1',
        access_key=storage_data.get('access_key'),
        secret_key=storage_data.get('secret_key'),
        prefix=storage_data.get('prefix') or 'kroncli',
    )
    if storage.type not in ('local', 's3'):
        raise ConfigError(f"Invalid storage type: {storage.type}. Valid options: ['local', 's3']")
    if storage.uses_s3 and not storage.bucket:
        raise ConfigError("S3 storage requires a bucket")

    options = data.get('backup') or {}
    timeout = options.get('timeout', defaults.BACKUP_TIMEOUT)

    try:
        return RunConfig(
            backends=backends,
            storage=storage,
            output_dir=storage.path or defaults.BACKUP_DIR,
            staging_dir=options.get('staging_dir') or defaults.STAGING_DIR,
            archive_prefix=options.get('prefix') or defaults.ARCHIVE_PREFIX,
            parallel=bool(options.get('parallel', defaults.PARALLEL)),
            max_workers=int(options.get('max_workers', defaults.MAX_WORKERS)),
            timeout=float(timeout) if timeout else None,
            keep_staging=bool(options.get('keep_staging', defaults.KEEP_STAGING)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid backup options: {e}")
