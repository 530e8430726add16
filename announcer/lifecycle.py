"""
Proxy Announcer Lifecycle
Registers the instance on host start and unregisters it on host stop
"""

import os
import threading
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from enum import Enum
from typing import Callable, Mapping, Optional
import logging

from .config import AnnouncerConfig, validate_config
from .dispatcher import DispatchOutcome, ResilientDispatcher
from .errors import ConfigurationError
from .request import RequestIntent, build_request
from monitoring.logger import LifecycleContext
from monitoring.metrics import MetricsCollector


class LifecycleState(Enum):
    """Lifecycle states"""
    IDLE = "idle"          # on_start not called yet
    DISABLED = "disabled"  # configuration invalid, registration skipped
    STARTED = "started"    # register dispatched
    STOPPED = "stopped"    # unregister dispatched


class LifecycleController:
    """
    Drives registration from the host's two lifecycle calls.

    ``on_start`` and ``on_stop`` return immediately; the network work runs
    on a worker thread and the returned Future resolves to a
    DispatchOutcome. Configuration is loaded once by ``on_start`` and
    reused by ``on_stop``. An invalid configuration disables the
    controller for the rest of the process lifetime.

    Example:
        >>> controller = LifecycleController(environ=os.environ)
        >>> controller.on_start()
        ...
        >>> controller.on_stop()
    """

    def __init__(self,
                 config_loader: Optional[Callable[[], AnnouncerConfig]] = None,
                 environ: Optional[Mapping[str, str]] = None,
                 dispatcher: Optional[ResilientDispatcher] = None,
                 executor: Optional[ThreadPoolExecutor] = None,
                 logger: Optional[logging.Logger] = None,
                 metrics: Optional[MetricsCollector] = None):

        if config_loader is None:
            snapshot = dict(os.environ if environ is None else environ)
            config_loader = lambda: validate_config(snapshot)
        self.config_loader = config_loader

        self.metrics = metrics or MetricsCollector()
        self._owns_dispatcher = dispatcher is None
        self.dispatcher = dispatcher or ResilientDispatcher(metrics=self.metrics)
        self.executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix='announcer'
        )
        self.logger = logger or logging.getLogger(__name__)

        self.config: Optional[AnnouncerConfig] = None
        self._state = LifecycleState.IDLE
        self._last_future: Optional[Future] = None
        self._lock = threading.Lock()

        self.metrics.set_lifecycle_state(self._state.value)

    @property
    def state(self) -> LifecycleState:
        return self._state

    def _set_state(self, state: LifecycleState):
        self._state = state
        self.metrics.set_lifecycle_state(state.value)

    def on_start(self) -> Optional[Future]:
        """
        Validate configuration and register asynchronously.

        Returns:
            Future of the register DispatchOutcome, or None if registration
            is skipped
        """
        with self._lock:
            if self._state is not LifecycleState.IDLE:
                self.logger.warning(f"on_start ignored in state {self._state.value}")
                return None

            try:
                config = self.config_loader()
            except ConfigurationError as e:
                self.logger.error(e.message)
                self.logger.error("Missing or invalid environment variables. Registration will be skipped.")
                self._set_state(LifecycleState.DISABLED)
                return None

            # Published before any worker can look at it
            self.config = config
            self._set_state(LifecycleState.STARTED)
            if self._owns_dispatcher:
                self.dispatcher.retry_delay = config.policy.retry_delay

            intent = RequestIntent.for_registration(config.is_fallback)
            descriptor = build_request(config, intent)
            self.logger.debug(f"Registering with proxy: {config.to_dict()}")

            return self._submit(
                'register', self._report_register, descriptor,
                config.policy.register_attempts, config.policy.register_timeout
            )

    def on_stop(self) -> Optional[Future]:
        """
        Unregister asynchronously, if on_start registered.

        Returns:
            Future of the unregister DispatchOutcome, or None when there is
            nothing to withdraw
        """
        with self._lock:
            if self._state is not LifecycleState.STARTED:
                self.logger.debug(f"on_stop skipped in state {self._state.value}")
                return None

            config = self.config
            self._set_state(LifecycleState.STOPPED)
            descriptor = build_request(config, RequestIntent.UNREGISTER)

            return self._submit(
                'unregister', self._report_unregister, descriptor,
                config.policy.unregister_attempts, config.policy.unregister_timeout
            )

    def _submit(self, event: str, report, descriptor, max_attempts: int,
                timeout: float) -> Optional[Future]:
        try:
            self._last_future = self.executor.submit(
                self._run, event, report, descriptor, max_attempts, timeout
            )
        except RuntimeError as e:
            # Executor already shut down by the host
            self.logger.warning(f"Cannot schedule {event}: {e}")
            return None
        return self._last_future

    def _run(self, event: str, report: Callable[[DispatchOutcome, RequestIntent], None],
             descriptor, max_attempts: int, timeout: float) -> DispatchOutcome:
        """Worker body; must not raise into the executor"""
        with LifecycleContext(event, server=self.config.server_name):
            outcome = self.dispatcher.dispatch(descriptor, max_attempts, timeout)
            try:
                report(outcome, descriptor.intent)
            except Exception as e:
                self.logger.error(f"Failed to report {event} outcome: {e}", exc_info=True)
            return outcome

    def _report_register(self, outcome: DispatchOutcome, intent: RequestIntent):
        config = self.config
        if outcome.success:
            self.logger.info(
                f"Registered server '{config.server_name}' with proxy via {intent.path} "
                f"(fallback={str(config.is_fallback).lower()})."
            )
        elif outcome.cancelled:
            self.logger.warning("Registration with proxy cancelled before it succeeded.")
        else:
            self.logger.error(
                f"Failed to register server '{config.server_name}' with proxy "
                f"after {outcome.attempts} attempt(s): {outcome.error}"
            )

    def _report_unregister(self, outcome: DispatchOutcome, intent: RequestIntent):
        config = self.config
        if outcome.success:
            self.logger.info(f"Unregistered server '{config.server_name}' from proxy.")
        elif outcome.cancelled:
            self.logger.warning(
                f"Unregistering server '{config.server_name}' from proxy was cancelled "
                f"after {outcome.attempts} attempt(s)."
            )
        else:
            self.logger.warning(
                f"Failed to unregister server '{config.server_name}' from proxy: {outcome.error}"
            )

    def wait(self, timeout: Optional[float] = None) -> Optional[DispatchOutcome]:
        """
        Wait for the most recent dispatch.

        Returns:
            Its DispatchOutcome, or None if nothing was dispatched or the
            deadline passed first
        """
        future = self._last_future
        if future is None:
            return None
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            self.logger.warning(f"Dispatch still running after {timeout}s")
            return None
        except CancelledError:
            return None

    def shutdown(self, cancel: bool = False):
        """
        Release the worker pool without blocking on in-flight work.

        Args:
            cancel: Also signal the dispatcher to stop retrying and drop
                queued dispatches
        """
        if cancel:
            self.dispatcher.cancel()
        self.executor.shutdown(wait=False, cancel_futures=cancel)
