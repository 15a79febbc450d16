"""
Configuration loading, validation and logging setup for the Evidentia hub

This module handles loading the JSON configuration file, merging it over
built-in defaults, applying environment overrides and configuring logging.
"""
import copy
import json
import logging
import logging.handlers
import os
import pathlib
from datetime import datetime, timedelta
from typing import Any, Dict

from .constants import (
    AUDIO_PLACEHOLDER, DEFAULT_LOG_TABLE, DEFAULT_LOG_TIMEOUT, DEFAULT_PORT,
    DEFAULT_SEND_QUEUE_SIZE, DEFAULT_WS_MAX_SIZE
)
from .exceptions import ConfigError

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "global": {
        "bind_host": "0.0.0.0",
        "port": DEFAULT_PORT,
        "ws_max_size": DEFAULT_WS_MAX_SIZE,
        "cors_origins": ["*"],
        "logging": {
            "file": "logs/evidentia.log",
            "file_level": "DEBUG",
            "console_level": "INFO",
            "retention_days": 30
        }
    },
    "sessions": {
        "send_queue_size": DEFAULT_SEND_QUEUE_SIZE
    },
    "radio_log": {
        "enabled": True,
        "url": "",
        "key": "",
        "table": DEFAULT_LOG_TABLE,
        "timeout": DEFAULT_LOG_TIMEOUT,
        "max_pending": 0,
        "audio_placeholder": AUDIO_PLACEHOLDER
    }
}

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    'SUPABASE_URL': ('radio_log', 'url'),
    'SUPABASE_KEY': ('radio_log', 'key'),
    'PORT': ('global', 'port')
}

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


def merge_config(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Merge overrides over defaults, section by section (in case new keys are added)"""
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def apply_env_overrides(config: Dict[str, Any], environ=None) -> Dict[str, Any]:
    """Environment variables win over the file (deployment secrets live there)"""
    environ = os.environ if environ is None else environ
    for var, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if not value:
            continue
        if key == 'port':
            try:
                value = int(value)
            except ValueError:
                raise ConfigError(f'{var} must be an integer, got {value!r}')
        config.setdefault(section, {})[key] = value
    return config


def load_config(config_file: str = None, environ=None) -> Dict[str, Any]:
    """
    Load JSON configuration file and merge it with defaults.

    Args:
        config_file: Path to JSON configuration file; None uses defaults only
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Configuration dictionary

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    file_config: Dict[str, Any] = {}
    if config_file:
        try:
            with open(config_file, 'r') as f:
                file_config = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigError(f'Error loading configuration from {config_file}: {e}') from e
        if not isinstance(file_config, dict):
            raise ConfigError(f'Configuration in {config_file} must be a JSON object')
        LOGGER.info(f'✓ Configuration loaded from {config_file}')

    config = merge_config(DEFAULT_CONFIG, file_config)
    return apply_env_overrides(config, environ)


def validate_config(config: Dict[str, Any]) -> bool:
    """
    Validate configuration structure and value types.

    Raises:
        ConfigError: On the first problem found
    """
    for section in ('global', 'sessions', 'radio_log'):
        if not isinstance(config.get(section), dict):
            raise ConfigError(f'Missing required configuration section: {section}')

    global_config = config['global']
    for field in ('bind_host', 'port'):
        if field not in global_config:
            raise ConfigError(f'Missing required global configuration field: {field}')

    port = global_config['port']
    if not isinstance(port, int) or not 0 < port < 65536:
        raise ConfigError(f'global.port must be an integer between 1 and 65535, got {port!r}')

    ws_max_size = global_config.get('ws_max_size')
    if not isinstance(ws_max_size, int) or ws_max_size <= 0:
        raise ConfigError(f'global.ws_max_size must be a positive integer, got {ws_max_size!r}')

    if not isinstance(global_config.get('cors_origins'), list):
        raise ConfigError('global.cors_origins must be a list')

    logging_config = global_config.get('logging', {})
    for key in ('file_level', 'console_level'):
        level = logging_config.get(key, 'INFO')
        if level not in LOG_LEVELS:
            raise ConfigError(f'global.logging.{key} must be one of {", ".join(LOG_LEVELS)}, got {level!r}')

    queue_size = config['sessions'].get('send_queue_size')
    if not isinstance(queue_size, int) or queue_size <= 0:
        raise ConfigError(f'sessions.send_queue_size must be a positive integer, got {queue_size!r}')

    max_pending = config['radio_log'].get('max_pending', 0)
    if not isinstance(max_pending, int) or max_pending < 0:
        raise ConfigError(f'radio_log.max_pending must be a non-negative integer, got {max_pending!r}')

    LOGGER.info('✓ Configuration validation passed')
    return True


def radio_log_configured(config: Dict[str, Any]) -> bool:
    """True when the durable radio log is enabled and has credentials"""
    radio_log = config.get('radio_log', {})
    return bool(radio_log.get('enabled', True) and radio_log.get('url') and radio_log.get('key'))


def cleanup_old_logs(log_dir: pathlib.Path, max_days: int) -> None:
    """Clean up log files older than max_days based on their date suffix"""
    cutoff_date = datetime.now() - timedelta(days=max_days)

    for log_file in log_dir.glob('evidentia.log.*'):
        try:
            # Expecting format: evidentia.log.YYYY-MM-DD
            date_str = log_file.name.split('.')[-1]
            file_date = datetime.strptime(date_str, '%Y-%m-%d')
            if file_date < cutoff_date:
                log_file.unlink()
                LOGGER.debug(f'Deleted old log file from {date_str}: {log_file}')
        except (OSError, ValueError) as e:
            LOGGER.warning(f'Error processing old log file {log_file}: {e}')


def setup_logging(config: Dict[str, Any], logger_names=('evidentia', 'dashboard')) -> None:
    """Configure rotating file and console logging for the hub loggers"""
    logging_config = config.get('global', {}).get('logging', {})

    log_file = logging_config.get('file', 'logs/evidentia.log')
    file_level = getattr(logging, logging_config.get('file_level', 'DEBUG'))
    console_level = getattr(logging, logging_config.get('console_level', 'INFO'))
    max_days = logging_config.get('retention_days', 30)

    log_format = logging.Formatter('%(asctime)s - %(levelname)s - %(name)s - %(message)s')

    log_path = pathlib.Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    cleanup_old_logs(log_path.parent, max_days)

    file_handler = logging.handlers.TimedRotatingFileHandler(
        str(log_path),
        when='midnight',
        interval=1,
        backupCount=max_days
    )
    # Rotated files get a YYYY-MM-DD suffix
    file_handler.suffix = '%Y-%m-%d'
    file_handler.setFormatter(log_format)
    file_handler.setLevel(file_level)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_format)
    console_handler.setLevel(console_level)

    # Level is the most verbose of the two handlers
    for name in logger_names:
        logger = logging.getLogger(name)
        logger.addHandler(file_handler)
        logger.addHandler(console_handler)
        logger.setLevel(min(file_level, console_level))
        logger.propagate = False
