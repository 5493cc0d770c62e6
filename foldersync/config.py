"""
Configuration Management

Server settings come from environment variables (optionally via a .env
file). The client keeps its own small JSON file with the token, the local
folder and the server address.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

MB = 1024 * 1024

DEFAULT_SERVER_URL = 'http://localhost:1244'
DEFAULT_CLIENT_CONFIG = Path('config.json')


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value:
        try:
            return int(value.strip())
        except ValueError:
            logger.warning(f"Ignoring invalid {key}={value!r}, using {default}")
    return default


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value:
        try:
            return float(value.strip())
        except ValueError:
            logger.warning(f"Ignoring invalid {key}={value!r}, using {default}")
    return default


@dataclass
class ServerConfig:
    """
    Folder server configuration.

    Environment variables:
        STORAGE_PATH            storage root (/data)
        TOKENS_PATH             token file (/run/secrets/tokens.txt)
        HOST / PORT             listen address (0.0.0.0:1244)
        MAX_MULTIPART_MB        multipart bytes kept in memory before spooling (8)
        MAX_UPLOAD_MB           request body ceiling, 0 = unlimited (0)
        TOKENS_REFRESH_SECONDS  token file poll interval (5)
        SHUTDOWN_GRACE_SECONDS  drain timeout for in-flight requests (10)
        LOG_LEVEL               INFO
    """
    storage_path: Path = field(default_factory=lambda: Path('/data'))
    tokens_path: Path = field(default_factory=lambda: Path('/run/secrets/tokens.txt'))
    host: str = '0.0.0.0'
    port: int = 1244

    max_multipart_bytes: int = 8 * MB
    max_upload_bytes: int = 0  # 0 = no limit

    tokens_refresh_seconds: float = 5.0
    shutdown_grace_seconds: float = 10.0

    log_level: str = 'INFO'

    @classmethod
    def from_env(cls) -> 'ServerConfig':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        storage = os.getenv('STORAGE_PATH')
        if storage:
            config.storage_path = Path(storage)
        tokens = os.getenv('TOKENS_PATH')
        if tokens:
            config.tokens_path = Path(tokens)

        config.host = os.getenv('HOST', config.host)
        config.port = _env_int('PORT', config.port)

        config.max_multipart_bytes = _env_int('MAX_MULTIPART_MB', config.max_multipart_bytes // MB) * MB
        config.max_upload_bytes = _env_int('MAX_UPLOAD_MB', config.max_upload_bytes // MB) * MB

        config.tokens_refresh_seconds = _env_float('TOKENS_REFRESH_SECONDS', config.tokens_refresh_seconds)
        config.shutdown_grace_seconds = _env_float('SHUTDOWN_GRACE_SECONDS', config.shutdown_grace_seconds)

        config.log_level = os.getenv('LOG_LEVEL', config.log_level).upper()

        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'storage_path': str(self.storage_path),
            'tokens_path': str(self.tokens_path),
            'host': self.host,
            'port': self.port,
            'max_multipart_bytes': self.max_multipart_bytes,
            'max_upload_bytes': self.max_upload_bytes,
            'tokens_refresh_seconds': self.tokens_refresh_seconds,
            'shutdown_grace_seconds': self.shutdown_grace_seconds,
            'log_level': self.log_level,
        }


@dataclass
class ClientConfig:
    """Settings persisted by the command-line client."""
    token: str = ''
    folder_path: str = ''
    server_url: str = DEFAULT_SERVER_URL

    @classmethod
    def load(cls, path: Path = DEFAULT_CLIENT_CONFIG) -> 'ClientConfig':
        """
        Load client settings from a JSON file.

        A missing or unreadable file yields defaults.
        """
        path = Path(path)
        config = cls()
        if not path.exists():
            return config

        try:
            with open(path, encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read {path}, using defaults: {e}")
            return config

        if not isinstance(data, dict):
            return config

        config.token = str(data.get('token') or '').strip()
        config.folder_path = str(data.get('folder_path') or '').strip()
        config.server_url = str(data.get('server_url') or '').strip() or DEFAULT_SERVER_URL
        return config

    def save(self, path: Path = DEFAULT_CLIENT_CONFIG):
        """Save settings to a JSON file."""
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(asdict(self), f, indent=2)

    def missing_fields(self) -> List[str]:
        """Names of settings that still need a value."""
        return [name for name in ('token', 'folder_path') if not getattr(self, name).strip()]


# === Helpers ===

def expand_path(value: str) -> str:
    """Expand environment variables and a leading "~"."""
    value = os.path.expandvars(value.strip())
    if not value:
        return value
    return os.path.expanduser(value)


def normalize_url(value: str) -> str:
    """
    Normalize a server address.

    Adds http:// when no scheme is given and strips trailing slashes.
    Returns an empty string for addresses that cannot be used.
    """
    value = value.strip()
    if not value:
        return ''
    if not value.startswith(('http://', 'https://')):
        value = 'http://' + value
    value = value.rstrip('/')

    parsed = urlparse(value)
    if not parsed.netloc or ' ' in value:
        return ''
    return value


def mask_token(token: Optional[str]) -> str:
    """Show only the first and last two characters of a token."""
    token = (token or '').strip()
    if len(token) <= 4:
        return token
    return token[:2] + '*' * (len(token) - 4) + token[-2:]
