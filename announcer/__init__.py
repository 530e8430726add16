"""
Proxy Announcer - registers a service instance with a routing proxy
"""

from .config import AnnouncerConfig, DispatchPolicy, validate_config, parse_bool
from .request import RequestIntent, RequestDescriptor, build_request
from .dispatcher import ResilientDispatcher, DispatchOutcome
from .lifecycle import LifecycleController, LifecycleState
from .errors import *

__version__ = "1.0.0"
__all__ = [
    'AnnouncerConfig',
    'DispatchPolicy',
    'validate_config',
    'parse_bool',
    'RequestIntent',
    'RequestDescriptor',
    'build_request',
    'ResilientDispatcher',
    'DispatchOutcome',
    'LifecycleController',
    'LifecycleState',
    'AnnouncerError',
    'ConfigurationError',
    'InvalidConfigurationError',
    'MissingFieldsError',
    'InvalidPortError',
    'DispatchError',
    'TransportError',
    'ProtocolError',
]
