"""
Configuration loader for the castbridge server
Loads and validates configuration from YAML files
"""

import yaml
import logging
from typing import Dict, Any
from pathlib import Path
from datetime import datetime
import pytz

logger = logging.getLogger(__name__)

DEFAULTS = {
    'discovery': {
        'scan_interval_seconds': 60,
        'interfaces': [],
        'resolve_timeout_ms': 3000,
    },
    'polling': {
        'interval_seconds': 30,
        'probe_timeout_seconds': 5,
    },
    'monitoring': {
        'eviction_threshold_hours': 24,
    },
    'cast': {
        'app_id': 'CC1AD845',
        'connect_timeout_seconds': 10,
        'request_timeout_seconds': 10,
        'stop_settle_ms': 500,
        'launch_retry_backoff_ms': 750,
        'load_settle_ms': 550,
        'session_ceiling_seconds': 120,
    },
    'commands': {
        'debounce_seconds': 2,
    },
    'tts': {
        'engine': 'gtts',
        'language': 'en',
        'voice': None,
        'buffer_retention_seconds': 60,
        'request_timeout_seconds': 10,
    },
    'api': {
        'host': '0.0.0.0',
        'port': 8000,
        'advertise_host': None,
    },
    'logging': {
        'level': 'INFO',
        'file': 'logs/castbridge.log',
        'console_output': True,
        'timezone': 'UTC',
    },
    'instance': {
        'namespace': 'castbridge.0',
    },
}

def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file with validation
    """
    try:
        config_file = Path(config_path)
        if not config_file.exists():
            logger.error(f"Configuration file not found: {config_path}")
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_file, 'r') as f:
            config = yaml.safe_load(f) or {}

        # Validate required sections
        _validate_config(config)

        # Apply defaults
        config = _apply_defaults(config)

        logger.info(f"Configuration loaded from {config_path}")
        return config

    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        raise

def _validate_config(config: Dict) -> None:
    """Validate that required configuration sections exist"""
    required_sections = ['database', 'discovery']

    for section in required_sections:
        if section not in config or config[section] is None:
            raise ValueError(f"Missing required configuration section: {section}")

    # Validate database section
    db = config['database']
    required_db_fields = ['host', 'port', 'database', 'username', 'password']
    for field in required_db_fields:
        if field not in db:
            raise ValueError(f"Missing required database field: {field}")

    interfaces = config['discovery'].get('interfaces')
    if interfaces is not None and not isinstance(interfaces, list):
        raise ValueError("discovery.interfaces must be a list of addresses")

    for section, key in (('polling', 'interval_seconds'), ('discovery', 'scan_interval_seconds'),
                         ('polling', 'probe_timeout_seconds')):
        value = (config.get(section) or {}).get(key)
        if value is not None and value <= 0:
            raise ValueError(f"{section}.{key} must be positive")

    engine = (config.get('tts') or {}).get('engine')
    if engine is not None and engine not in ('gtts', 'google_translate'):
        raise ValueError(f"tts.engine must be 'gtts' or 'google_translate', got '{engine}'")

def _apply_defaults(config: Dict) -> Dict:
    """Apply default values to configuration"""
    for section, defaults in DEFAULTS.items():
        if config.get(section) is None:
            config[section] = {}
        for key, default_value in defaults.items():
            if key not in config[section]:
                config[section][key] = default_value

    # Monitoring threshold of zero or less disables eviction
    if config['monitoring']['eviction_threshold_hours'] <= 0:
        logger.info("Device eviction disabled (monitoring.eviction_threshold_hours <= 0)")

    return config


class TimezoneFormatter(logging.Formatter):
    """Custom formatter to display timestamps in the configured timezone"""

    def __init__(self, fmt=None, timezone: str = 'UTC'):
        super().__init__(fmt)
        self.tz = pytz.timezone(timezone)

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, tz=self.tz)
        if datefmt:
            return dt.strftime(datefmt)
        else:
            # Default format: YYYY-MM-DD HH:MM:SS TZ
            return dt.strftime('%Y-%m-%d %H:%M:%S %Z')

def setup_logging(config: Dict) -> None:
    """Setup logging based on configuration with timezone-aware timestamps"""
    log_config = config.get('logging', {})
    level = log_config.get('level', 'INFO')

    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = TimezoneFormatter(log_format, log_config.get('timezone', 'UTC'))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))

    if log_config.get('console_output', True):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    log_file = log_config.get('file')
    if log_file:
        # Create logs directory if it doesn't exist
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # pychromecast and zeroconf are chatty at INFO
    logging.getLogger('pychromecast').setLevel(logging.WARNING)
    logging.getLogger('zeroconf').setLevel(logging.WARNING)

    logger.info(f"Logging configured: level={level}, tz={log_config.get('timezone', 'UTC')}, "
                f"console={log_config.get('console_output', True)}, file={log_file}")

def get_sample_config() -> Dict:
    """Return a sample configuration for reference"""
    return {
        "database": {
            "host": "localhost",
            "port": 5432,
            "database": "castbridge_db",
            "username": "postgres",
            "password": "postgres"
        },
        "discovery": {
            "scan_interval_seconds": 60,
            "interfaces": [],              # empty: all interfaces
            "resolve_timeout_ms": 3000
        },
        "polling": {
            "interval_seconds": 30,
            "probe_timeout_seconds": 5
        },
        "monitoring": {
            "eviction_threshold_hours": 24  # <= 0 disables eviction
        },
        "cast": {
            "app_id": "CC1AD845",           # Default Media Receiver
            "connect_timeout_seconds": 10,
            "request_timeout_seconds": 10,
            "stop_settle_ms": 500,
            "launch_retry_backoff_ms": 750,
            "load_settle_ms": 550,
            "session_ceiling_seconds": 120
        },
        "commands": {
            "debounce_seconds": 2
        },
        "tts": {
            "engine": "gtts",               # gtts | google_translate
            "language": "en",
            "voice": None,                  # gtts regional domain, e.g. "co.uk"
            "buffer_retention_seconds": 60,
            "request_timeout_seconds": 10
        },
        "api": {
            "host": "0.0.0.0",
            "port": 8000,
            "advertise_host": None          # address receivers fetch audio from
        },
        "logging": {
            "level": "INFO",
            "file": "logs/castbridge.log",
            "console_output": True,
            "timezone": "UTC"
        },
        "instance": {
            "namespace": "castbridge.0"
        }
    }
