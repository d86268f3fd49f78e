"""
Engine configuration loader.

Settings come from a YAML file; environment variables (optionally from a
.env file) override the most common keys. A default file is written the
first time the loader runs against a missing path.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from ilmd.exceptions import ConfigurationError
from ilmd.storage.models import WEEKDAYS
from ilmd.storage.repository import BATCH_SIZE_KEY, DEFAULT_BATCH_SIZE, ExecutionStore

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("configs/ilm.yaml")
DEFAULT_SCHEDULE_NAME = 'DEFAULT_SCHEDULE'

_TRUE_VALUES = ('1', 'true', 'yes', 'on')


class EngineConfig(BaseModel):
    """Runtime settings for the execution engine."""
    db_path: str = "data/ilm.db"
    schedule_name: str = DEFAULT_SCHEDULE_NAME
    check_interval_minutes: float = 60
    log_level: str = "INFO"
    log_dir: Optional[str] = "logs"
    dry_run: bool = True
    executor: Optional[str] = None
    auto_recover: bool = False
    stale_batch_minutes: float = 120
    metrics_port: Optional[int] = None
    schedules: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    settings: Dict[str, Any] = Field(default_factory=dict)


def get_default_config() -> Dict[str, Any]:
    """Default configuration written for a fresh install."""
    return {
        'engine': {
            'db_path': 'data/ilm.db',
            'schedule_name': DEFAULT_SCHEDULE_NAME,
            'check_interval_minutes': 60,
            'log_level': 'INFO',
            'log_dir': 'logs',
            'dry_run': True,
            'executor': None,
            'auto_recover': False,
            'stale_batch_minutes': 120,
            'metrics_port': None
        },
        'schedules': {
            DEFAULT_SCHEDULE_NAME: {
                'description': 'Weeknight maintenance window',
                'enabled': True,
                'monday_hours': '22:00-06:00',
                'tuesday_hours': '22:00-06:00',
                'wednesday_hours': '22:00-06:00',
                'thursday_hours': '22:00-06:00',
                'friday_hours': '22:00-06:00',
                'saturday_hours': None,
                'sunday_hours': None,
                'batch_cooldown_minutes': 5,
                'enable_checkpointing': True,
                'checkpoint_frequency': 5
            }
        },
        'settings': {
            BATCH_SIZE_KEY: DEFAULT_BATCH_SIZE
        }
    }


def save_config(config_data: Dict[str, Any], config_path: Path):
    """Write configuration data to a YAML file."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, 'w') as f:
        yaml.dump(config_data, f, default_flow_style=False, indent=2)


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if os.getenv("ILM_DB_PATH"):
        overrides['db_path'] = os.getenv("ILM_DB_PATH")
    if os.getenv("ILM_SCHEDULE"):
        overrides['schedule_name'] = os.getenv("ILM_SCHEDULE")
    if os.getenv("ILM_LOG_LEVEL"):
        overrides['log_level'] = os.getenv("ILM_LOG_LEVEL").upper()
    if os.getenv("ILM_DRY_RUN"):
        overrides['dry_run'] = os.getenv("ILM_DRY_RUN").lower() in _TRUE_VALUES
    return overrides


def load_engine_config(config_path: Optional[Path] = None, use_env: bool = True) -> EngineConfig:
    """
    Load engine configuration.

    Args:
        config_path: YAML file to read; created with defaults when missing
        use_env: Apply ILM_* environment overrides (after loading .env)

    Returns:
        Validated EngineConfig

    Raises:
        ConfigurationError: If the file cannot be parsed or fails validation
    """
    config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if config_path.exists():
        try:
            with open(config_path, 'r') as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
    else:
        logger.warning(f"Config file not found at {config_path}. Writing defaults.")
        config_data = get_default_config()
        save_config(config_data, config_path)

    values: Dict[str, Any] = dict(config_data.get('engine') or {})
    values['schedules'] = config_data.get('schedules') or {}
    values['settings'] = config_data.get('settings') or {}

    if use_env:
        load_dotenv()
        values.update(_env_overrides())

    try:
        return EngineConfig(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid engine configuration in {config_path}: {e}") from e


def seed_store(store: ExecutionStore, config: EngineConfig) -> Dict[str, int]:
    """
    Create the schema and upsert configured schedules and global settings.

    Returns:
        Mapping of schedule name to schedule id
    """
    store.ensure_schema()

    schedule_ids = {}
    for name, fields in config.schedules.items():
        unknown = set(fields) - {f"{day}_hours" for day in WEEKDAYS} - {
            'description', 'enabled', 'schedule_type', 'batch_cooldown_minutes',
            'enable_checkpointing', 'checkpoint_frequency'
        }
        if unknown:
            raise ConfigurationError(f"Unknown fields for schedule {name}: {', '.join(sorted(unknown))}")
        schedule_ids[name] = store.upsert_schedule(name, **fields)
        logger.info(f"Seeded schedule {name} (id {schedule_ids[name]})")

    for key, value in config.settings.items():
        store.set_config_value(key, value)
        logger.info(f"Seeded setting {key}={value}")

    return schedule_ids
