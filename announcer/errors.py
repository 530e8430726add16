"""
Proxy Announcer Error Handling
Exception hierarchy for configuration and dispatch failures
"""

from typing import Iterable, Optional


class AnnouncerError(Exception):
    """Base exception for all announcer errors"""
    code = 1000
    message = "Announcer error"

    def __init__(self, message=None, cause=None):
        self.message = message or self.message
        self.cause = cause
        super().__init__(self.message)

    def to_dict(self):
        return {
            'code': self.code,
            'message': self.message,
            'cause': str(self.cause) if self.cause else None
        }


# Dispatch Errors (1100-1199)
class DispatchError(AnnouncerError):
    """A single HTTP attempt against the registry failed"""
    code = 1100
    message = "Dispatch error"


class TransportError(DispatchError):
    """Connection, DNS or timeout failure before a status was received"""
    code = 1101
    message = "Transport error"


class ProtocolError(DispatchError):
    """Registry answered with a non-2xx status"""
    code = 1102
    message = "Unexpected HTTP status"

    def __init__(self, status_code: int, body: Optional[str] = None, cause=None):
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP {status_code}: {body or ''}", cause)

    def to_dict(self):
        data = super().to_dict()
        data['status_code'] = self.status_code
        data['body'] = self.body
        return data


# Configuration Errors (1800-1899)
class ConfigurationError(AnnouncerError):
    """Configuration errors"""
    code = 1800
    message = "Configuration error"


class InvalidConfigurationError(ConfigurationError):
    """Invalid configuration"""
    code = 1801
    message = "Invalid configuration"


class MissingFieldsError(ConfigurationError):
    """One or more required settings are absent or blank"""
    code = 1802
    message = "Missing required settings"

    def __init__(self, fields: Iterable[str]):
        self.fields = tuple(fields)
        super().__init__(f"Missing required env vars: {' '.join(self.fields)}")

    def to_dict(self):
        data = super().to_dict()
        data['fields'] = list(self.fields)
        return data


class InvalidPortError(ConfigurationError):
    """A port setting is not a base-10 integer"""
    code = 1803
    message = "Invalid port"

    def __init__(self, field: str, value):
        self.field = field
        self.value = value
        super().__init__(f"Invalid {field}: {value!r}")

    def to_dict(self):
        data = super().to_dict()
        data['field'] = self.field
        data['value'] = self.value
        return data
