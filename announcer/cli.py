"""
Proxy Announcer CLI
Runs the announcer as a sidecar: register on launch, unregister on SIGTERM/SIGINT
"""

import argparse
import os
import signal
import sys
import threading
from typing import List, Optional
import logging

from .config import AnnouncerConfig
from .lifecycle import LifecycleController, LifecycleState
from monitoring.logger import setup_logging
from monitoring.metrics import MetricsCollector

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='announcer',
        description='Register this instance with the proxy and unregister it on shutdown',
    )
    parser.add_argument(
        '--config', type=str,
        help='YAML/JSON config file; environment variables are used when omitted',
    )
    parser.add_argument(
        '--log-level', dest='log_level',
        default=os.environ.get('ANNOUNCER_LOG_LEVEL', 'INFO'),
        help='Logging level (default: %(default)s)',
    )
    parser.add_argument(
        '--log-format', dest='log_format', choices=['json', 'console'],
        default=os.environ.get('ANNOUNCER_LOG_FORMAT', 'console'),
        help='Log output format (default: %(default)s)',
    )
    parser.add_argument('--log-file', dest='log_file', help='Also log to this rotating file')
    parser.add_argument(
        '--metrics-port', dest='metrics_port', type=int,
        help='Expose Prometheus metrics on this port',
    )
    parser.add_argument(
        '--stop-timeout', dest='stop_timeout', type=float, default=3.5,
        help='Seconds to wait for the unregister request on shutdown (default: %(default)s)',
    )
    return parser


def install_signal_handlers(stop_event: threading.Event):
    """Set stop_event on SIGINT/SIGTERM"""
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def run(args: argparse.Namespace, stop_event: threading.Event,
        controller: Optional[LifecycleController] = None) -> int:
    """
    Drive one register/unregister lifecycle.

    Returns:
        Process exit code: 0 after a normal stop, 1 if configuration is
        invalid and registration was skipped
    """
    if controller is None:
        metrics = MetricsCollector()
        if args.metrics_port:
            metrics.start_http_server(args.metrics_port)

        if args.config:
            config_path = args.config
            controller = LifecycleController(
                config_loader=lambda: AnnouncerConfig.from_file(config_path),
                metrics=metrics,
            )
        else:
            controller = LifecycleController(environ=os.environ, metrics=metrics)

    controller.on_start()
    if controller.state is LifecycleState.DISABLED:
        controller.shutdown()
        return 1

    while not stop_event.wait(1.0):
        pass

    controller.on_stop()
    controller.wait(timeout=args.stop_timeout)
    controller.shutdown(cancel=True)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Console script entry point"""
    args = build_parser().parse_args(argv)
    setup_logging(
        service_name=os.environ.get('SERVER_NAME', 'announcer'),
        log_level=args.log_level,
        log_format=args.log_format,
        log_file=args.log_file,
    )

    stop_event = threading.Event()
    install_signal_handlers(stop_event)

    try:
        return run(args, stop_event)
    except KeyboardInterrupt:
        return 130


if __name__ == '__main__':
    sys.exit(main())
