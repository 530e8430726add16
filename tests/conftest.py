"""
Pytest configuration and fixtures
"""

import pytest
import socket
import sys
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from urllib.parse import parse_qsl, urlparse

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from announcer.config import AnnouncerConfig, DispatchPolicy
from announcer.dispatcher import ResilientDispatcher
from monitoring.metrics import MetricsCollector


class FakeRegistry:
    """
    In-thread HTTP registry that records every request.

    Responses are served from a script; once it runs out every request
    gets ``default``.
    """

    def __init__(self, default=(200, 'ok')):
        self.requests = []
        self.default = default
        self._script = []
        self._lock = threading.Lock()
        self.server = ThreadingHTTPServer(('127.0.0.1', 0), self._make_handler())
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)

    @property
    def host(self) -> str:
        return self.server.server_address[0]

    @property
    def port(self) -> int:
        return self.server.server_address[1]

    def script(self, *responses):
        with self._lock:
            self._script.extend(responses)

    def paths(self):
        return [r['path'] for r in self.requests]

    def _next_response(self):
        with self._lock:
            if self._script:
                return self._script.pop(0)
            return self.default

    def _make_handler(self):
        registry = self

        class Handler(BaseHTTPRequestHandler):

            def log_message(self, format, *args):
                pass

            def do_POST(self):
                parsed = urlparse(self.path)
                length = int(self.headers.get('Content-Length') or 0)
                body = self.rfile.read(length) if length else b''
                with registry._lock:
                    registry.requests.append({
                        'method': 'POST',
                        'path': parsed.path,
                        'raw_query': parsed.query,
                        'query': parse_qsl(parsed.query, keep_blank_values=True),
                        'headers': dict(self.headers),
                        'body': body,
                    })

                status, text = registry._next_response()
                payload = text.encode()
                self.send_response(status)
                self.send_header('Content-Type', 'text/plain')
                self.send_header('Content-Length', str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)

        return Handler

    def start(self):
        self.thread.start()
        return self

    def stop(self):
        self.server.shutdown()
        self.server.server_close()


@pytest.fixture
def fake_registry():
    """Running fake registry, stopped after the test"""
    registry = FakeRegistry().start()
    yield registry
    registry.stop()


@pytest.fixture
def closed_port():
    """A local port with nothing listening on it"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(('127.0.0.1', 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture
def env(fake_registry):
    """Valid environment pointing at the fake registry"""
    return {
        'PROXY_IP': fake_registry.host,
        'PROXY_PORT': str(fake_registry.port),
        'SERVER_NAME': 'lobby-1',
        'SERVER_IP': '10.0.0.17',
        'SERVER_PORT': '25565',
    }


@pytest.fixture
def config():
    """Validated configuration without network meaning"""
    return AnnouncerConfig(
        proxy_host='proxy.local',
        proxy_port='8080',
        server_name='lobby 1',
        server_host='10.0.0.17',
        server_port='25565',
        proxy_key='s3cret',
        is_fallback=False,
        policy=DispatchPolicy(),
    )


@pytest.fixture
def metrics():
    """Fresh metrics collector with its own registry"""
    return MetricsCollector()


@pytest.fixture
def dispatcher(metrics):
    """Dispatcher without inter-attempt delay"""
    d = ResilientDispatcher(retry_delay=0, metrics=metrics)
    yield d
    d.close()
