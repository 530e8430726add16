"""
Proxy Announcer Configuration
Environment/YAML/JSON configuration with validation
"""

import os
import re
import json
import yaml
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union
from dataclasses import dataclass, field, asdict, fields
import logging

from .errors import (
    ConfigurationError, InvalidConfigurationError,
    MissingFieldsError, InvalidPortError
)

logger = logging.getLogger(__name__)


# Environment variable names
ENV_PROXY_HOST = 'PROXY_IP'
ENV_PROXY_PORT = 'PROXY_PORT'
ENV_PROXY_KEY = 'PROXY_KEY'
ENV_SERVER_NAME = 'SERVER_NAME'
ENV_SERVER_HOST = 'SERVER_IP'
ENV_SERVER_PORT = 'SERVER_PORT'
ENV_FALLBACK = 'SERVER_TYPE_FALLBACK'

REQUIRED_ENV = (
    ENV_PROXY_HOST,
    ENV_PROXY_PORT,
    ENV_SERVER_NAME,
    ENV_SERVER_HOST,
    ENV_SERVER_PORT,
)

# snake_case file keys -> environment names
FILE_KEYS = {
    'proxy_host': ENV_PROXY_HOST,
    'proxy_port': ENV_PROXY_PORT,
    'proxy_key': ENV_PROXY_KEY,
    'server_name': ENV_SERVER_NAME,
    'server_host': ENV_SERVER_HOST,
    'server_port': ENV_SERVER_PORT,
    'fallback': ENV_FALLBACK,
}

TRUE_VALUES = frozenset({'true', '1', 'yes', 'y'})
FALSE_VALUES = frozenset({'false', '0', 'no', 'n'})

_PORT_RE = re.compile(r'[+-]?[0-9]+')

# Ports must fit a signed 32-bit integer
PORT_MIN = -2**31
PORT_MAX = 2**31 - 1

# File keys whose YAML value must not be a boolean
IDENTITY_KEYS = ('proxy_host', 'proxy_port', 'proxy_key',
                 'server_name', 'server_host', 'server_port')


def trim_to_none(value: Any) -> Optional[str]:
    """Strip a raw value, mapping blank or missing input to None"""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_bool(value: Any, default: bool = False) -> bool:
    """
    Permissive boolean parse.

    Recognised spellings (case-insensitive) are true/1/yes/y and
    false/0/no/n. Anything else, including None, yields ``default``
    instead of failing.
    """
    text = trim_to_none(value)
    if text is None:
        return default
    text = text.lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    return default


def is_port(value: str) -> bool:
    """True if value is a base-10 integer in the signed 32-bit range"""
    if not _PORT_RE.fullmatch(value):
        return False
    return PORT_MIN <= int(value) <= PORT_MAX


@dataclass(frozen=True)
class DispatchPolicy:
    """Retry budgets and timeouts for the two lifecycle events"""
    register_attempts: int = 2
    register_timeout: float = 5.0
    unregister_attempts: int = 1
    unregister_timeout: float = 3.0
    retry_delay: float = 0.3

    def validate(self):
        """Validate dispatch policy"""
        if self.register_attempts < 1 or self.unregister_attempts < 1:
            raise InvalidConfigurationError(
                f"Invalid attempts: register={self.register_attempts}, "
                f"unregister={self.unregister_attempts}"
            )
        if self.register_timeout <= 0 or self.unregister_timeout <= 0:
            raise InvalidConfigurationError(
                f"Invalid timeout: register={self.register_timeout}, "
                f"unregister={self.unregister_timeout}"
            )
        if self.retry_delay < 0:
            raise InvalidConfigurationError(f"Invalid retry_delay: {self.retry_delay}")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'DispatchPolicy':
        """Build a policy from a mapping, ignoring unknown keys"""
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise InvalidConfigurationError(
                f"policy must be a mapping, got {type(data).__name__}"
            )
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            if key not in known:
                logger.warning(f"Ignoring unknown policy setting: {key}")
                continue
            try:
                values[key] = int(value) if key.endswith('_attempts') else float(value)
            except (TypeError, ValueError) as e:
                raise InvalidConfigurationError(f"Invalid {key}: {value!r}", cause=e)
        policy = cls(**values)
        policy.validate()
        return policy


@dataclass(frozen=True)
class AnnouncerConfig:
    """Validated identity of the registry and of the announced instance"""
    proxy_host: str
    proxy_port: str
    server_name: str
    server_host: str
    server_port: str
    proxy_key: Optional[str] = None
    is_fallback: bool = False
    policy: DispatchPolicy = field(default_factory=DispatchPolicy)

    @property
    def has_credentials(self) -> bool:
        return self.proxy_key is not None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None,
                 policy: Optional[DispatchPolicy] = None) -> 'AnnouncerConfig':
        """Load configuration from environment variables"""
        if environ is None:
            environ = os.environ
        return validate_config(environ, policy=policy)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'AnnouncerConfig':
        """Load configuration from YAML/JSON file"""
        path = Path(path)

        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")

        if path.suffix not in ['.yaml', '.yml', '.json']:
            raise ConfigurationError(f"Unsupported file format: {path.suffix}")

        try:
            with open(path, 'r') as f:
                if path.suffix == '.json':
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read config file {path}: {e}", cause=e)

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise InvalidConfigurationError(f"Config file must contain a mapping: {path}")

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AnnouncerConfig':
        """Load configuration from a snake_case dictionary"""
        raw = {}
        for key, value in data.items():
            if key == 'policy':
                continue
            if key in IDENTITY_KEYS and isinstance(value, bool):
                # YAML 1.1 reads yes/no/on/off unquoted as booleans
                raise InvalidConfigurationError(
                    f"{key} must be a string, got boolean {value}; quote it in the file"
                )
            if key in FILE_KEYS:
                raw[FILE_KEYS[key]] = value
            else:
                logger.warning(f"Ignoring unknown config key: {key}")

        policy = DispatchPolicy.from_dict(data.get('policy'))
        return validate_config(raw, policy=policy)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary, redacting the proxy key"""
        return {
            'proxy_host': self.proxy_host,
            'proxy_port': self.proxy_port,
            'proxy_key': '***' if self.proxy_key else None,
            'server_name': self.server_name,
            'server_host': self.server_host,
            'server_port': self.server_port,
            'fallback': self.is_fallback,
            'policy': asdict(self.policy),
        }


def validate_config(raw: Mapping[str, Any],
                    policy: Optional[DispatchPolicy] = None) -> AnnouncerConfig:
    """
    Validate raw environment-style settings into an AnnouncerConfig.

    Args:
        raw: Mapping keyed by the environment variable names
            (PROXY_IP, PROXY_PORT, ...). Values are trimmed and blank
            values count as absent.
        policy: Optional dispatch policy to attach

    Returns:
        AnnouncerConfig: fully validated configuration

    Raises:
        MissingFieldsError: naming every absent required setting
        InvalidPortError: if PROXY_PORT or SERVER_PORT is not an integer
    """
    values = {name: trim_to_none(raw.get(name)) for name in REQUIRED_ENV}

    missing = [name for name in REQUIRED_ENV if values[name] is None]
    if missing:
        raise MissingFieldsError(missing)

    for name in (ENV_PROXY_PORT, ENV_SERVER_PORT):
        if not is_port(values[name]):
            raise InvalidPortError(name, values[name])

    return AnnouncerConfig(
        proxy_host=values[ENV_PROXY_HOST],
        proxy_port=values[ENV_PROXY_PORT],
        server_name=values[ENV_SERVER_NAME],
        server_host=values[ENV_SERVER_HOST],
        server_port=values[ENV_SERVER_PORT],
        proxy_key=trim_to_none(raw.get(ENV_PROXY_KEY)),
        is_fallback=parse_bool(raw.get(ENV_FALLBACK), False),
        policy=policy or DispatchPolicy(),
    )
