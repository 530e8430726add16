"""
Proxy Announcer Dispatcher
Bounded-retry HTTP delivery with fixed backoff and cooperative cancellation
"""

import threading
import time
from dataclasses import dataclass
from typing import Optional
import logging

import requests

from .errors import ProtocolError, TransportError
from .request import RequestDescriptor
from monitoring.metrics import MetricsCollector

logger = logging.getLogger(__name__)


DEFAULT_RETRY_DELAY = 0.3  # seconds between attempts


@dataclass(frozen=True)
class DispatchOutcome:
    """Result of one dispatch cycle"""
    success: bool
    attempts: int
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    error: Optional[str] = None
    cancelled: bool = False


class ResilientDispatcher:
    """
    Sends a RequestDescriptor until one attempt gets a 2xx status

    Any non-2xx status and any transport failure is retried up to the
    attempt budget with a fixed delay in between. Redirects are not
    followed, so 3xx counts as a failure.
    """

    def __init__(self, session: Optional[requests.Session] = None,
                 retry_delay: float = DEFAULT_RETRY_DELAY,
                 cancel_event: Optional[threading.Event] = None,
                 metrics: Optional[MetricsCollector] = None):
        if session is None:
            session = requests.Session()
            # Registry is always reached directly, never via *_PROXY env vars
            session.trust_env = False
        self.session = session
        self.retry_delay = retry_delay
        self.cancel_event = cancel_event or threading.Event()
        self.metrics = metrics

    def cancel(self):
        """Ask in-progress and future dispatches to stop at the next checkpoint"""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def dispatch(self, descriptor: RequestDescriptor, max_attempts: int,
                 attempt_timeout: float) -> DispatchOutcome:
        """
        Execute a request with bounded retries. Never raises.

        Args:
            descriptor: Request to send
            max_attempts: Attempt budget, clamped to at least 1
            attempt_timeout: Seconds allowed for connect and for read,
                fresh for every attempt

        Returns:
            DispatchOutcome describing the last attempt
        """
        attempts = max(1, int(max_attempts))
        intent = descriptor.intent.label
        start_time = time.time()

        made = 0
        status_code = None
        body = None
        error = None
        cancelled = False

        for attempt in range(1, attempts + 1):
            if self.cancel_event.is_set():
                cancelled = True
                break

            made = attempt
            try:
                status_code, body = self._attempt(descriptor, attempt_timeout)
                logger.debug(f"HTTP OK {status_code}: {body}",
                             extra={'intent': intent, 'attempt': attempt, 'status_code': status_code})
                self._record_attempt(intent, 'success')
                return self._finish(
                    intent, start_time,
                    DispatchOutcome(True, made, status_code, body)
                )

            except ProtocolError as e:
                status_code, body, error = e.status_code, e.body, e.message
                logger.warning(f"HTTP {e.status_code}: {e.body}",
                               extra={'intent': intent, 'attempt': attempt, 'status_code': e.status_code})
                self._record_attempt(intent, 'protocol_error')

            except TransportError as e:
                status_code, body, error = None, None, e.message
                logger.warning(f"HTTP attempt {attempt} failed: {e.message}",
                               extra={'intent': intent, 'attempt': attempt})
                self._record_attempt(intent, 'transport_error')

            except Exception as e:
                status_code, body, error = None, None, str(e)
                logger.warning(f"HTTP attempt {attempt} failed: {e}", exc_info=True,
                               extra={'intent': intent, 'attempt': attempt})
                self._record_attempt(intent, 'error')

            if attempt < attempts:
                # Event stays set after wake-up so the caller sees it too
                if self.cancel_event.wait(self.retry_delay):
                    cancelled = True
                    break

        if cancelled:
            logger.info(f"Dispatch to {descriptor.intent.path} cancelled after {made} attempt(s)")

        return self._finish(
            intent, start_time,
            DispatchOutcome(False, made, status_code, body, error, cancelled)
        )

    def _attempt(self, descriptor: RequestDescriptor, timeout: float):
        """Send one request; return (status, body) on 2xx or raise DispatchError"""
        try:
            response = self.session.request(
                descriptor.method,
                descriptor.url,
                headers=descriptor.headers,
                data=descriptor.body,
                timeout=(timeout, timeout),
                allow_redirects=False
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(str(e), cause=e)

        try:
            body = response.text
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Failed reading response body: {e}", cause=e)
        finally:
            response.close()

        if 200 <= response.status_code < 300:
            return response.status_code, body
        raise ProtocolError(response.status_code, body)

    def _record_attempt(self, intent: str, result: str):
        if self.metrics:
            self.metrics.record_attempt(intent, result)

    def _finish(self, intent: str, start_time: float,
                outcome: DispatchOutcome) -> DispatchOutcome:
        if self.metrics:
            if outcome.success:
                label = 'success'
            elif outcome.cancelled:
                label = 'cancelled'
            else:
                label = 'failure'
            self.metrics.record_dispatch(intent, label, time.time() - start_time)
        return outcome

    def close(self):
        self.session.close()