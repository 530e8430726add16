"""
Tests for the lifecycle controller
"""

import logging
import threading
import pytest
from unittest.mock import Mock

from announcer.config import AnnouncerConfig, DispatchPolicy
from announcer.dispatcher import DispatchOutcome, ResilientDispatcher
from announcer.lifecycle import LifecycleController, LifecycleState
from announcer.request import RequestIntent
from monitoring.logger import LifecycleContext


def messages(mock_method):
    return [c.args[0] for c in mock_method.call_args_list]


class TestLifecycleController:
    """End-to-end lifecycle against the fake registry"""

    @pytest.fixture(autouse=True)
    def setup(self, env, dispatcher, metrics):
        self.env = env
        self.dispatcher = dispatcher
        self.metrics = metrics
        self.logger = Mock(spec=logging.Logger)
        self.controllers = []
        yield
        for controller in self.controllers:
            controller.shutdown()

    def make_controller(self, **env_overrides):
        controller = LifecycleController(
            environ={**self.env, **env_overrides},
            dispatcher=self.dispatcher,
            logger=self.logger,
            metrics=self.metrics,
        )
        self.controllers.append(controller)
        return controller

    def test_register_on_start(self, fake_registry):
        controller = self.make_controller()

        future = controller.on_start()
        outcome = future.result(timeout=10)

        assert outcome.success is True
        assert controller.state is LifecycleState.STARTED
        assert len(fake_registry.requests) == 1
        sent = fake_registry.requests[0]
        assert sent['path'] == '/api/register'
        assert sent['raw_query'] == 'name=lobby-1&host=10.0.0.17&port=25565'
        assert 'Authorization' not in sent['headers']

        info = messages(self.logger.info)
        assert any('lobby-1' in m and 'fallback=false' in m for m in info)

    def test_register_fallback(self, fake_registry):
        controller = self.make_controller(SERVER_TYPE_FALLBACK='Y', PROXY_KEY='k1')

        controller.on_start().result(timeout=10)

        sent = fake_registry.requests[0]
        assert sent['path'] == '/api/register-fallback'
        assert sent['headers']['Authorization'] == 'Bearer k1'
        assert any('fallback=true' in m for m in messages(self.logger.info))

    def test_register_failure_logged_as_error(self, fake_registry):
        fake_registry.default = (500, 'down')
        controller = self.make_controller()

        outcome = controller.on_start().result(timeout=10)

        assert outcome.success is False
        assert outcome.attempts == 2
        assert len(fake_registry.requests) == 2
        assert any('Failed to register' in m for m in messages(self.logger.error))
        # Failed registration still allows unregister on stop
        assert controller.state is LifecycleState.STARTED

    def test_unregister_on_stop(self, fake_registry):
        controller = self.make_controller()
        controller.on_start().result(timeout=10)

        outcome = controller.on_stop().result(timeout=10)

        assert outcome.success is True
        assert controller.state is LifecycleState.STOPPED
        assert fake_registry.paths() == ['/api/register', '/api/unregister']
        assert fake_registry.requests[1]['raw_query'] == 'name=lobby-1'
        assert any('Unregistered' in m for m in messages(self.logger.info))

    def test_unregister_single_attempt(self, fake_registry):
        controller = self.make_controller()
        controller.on_start().result(timeout=10)
        fake_registry.default = (500, 'down')

        outcome = controller.on_stop().result(timeout=10)

        assert outcome.attempts == 1
        assert fake_registry.paths() == ['/api/register', '/api/unregister']
        assert any('Failed to unregister' in m for m in messages(self.logger.warning))
        self.logger.error.assert_not_called()

    def test_invalid_config_disables(self, fake_registry):
        controller = self.make_controller(SERVER_NAME='  ', SERVER_PORT='')

        assert controller.on_start() is None
        assert controller.state is LifecycleState.DISABLED
        errors = messages(self.logger.error)
        assert any('SERVER_NAME' in m and 'SERVER_PORT' in m for m in errors)
        assert any('Registration will be skipped' in m for m in errors)

        assert controller.on_stop() is None
        assert controller.wait(timeout=1) is None
        assert fake_registry.requests == []

    def test_invalid_port_disables(self, fake_registry):
        controller = self.make_controller(PROXY_PORT='eighty')

        assert controller.on_start() is None
        assert controller.state is LifecycleState.DISABLED
        assert any('PROXY_PORT' in m for m in messages(self.logger.error))
        assert fake_registry.requests == []

    def test_stop_without_start_is_noop(self, fake_registry):
        controller = self.make_controller()

        assert controller.on_stop() is None
        assert controller.state is LifecycleState.IDLE
        assert fake_registry.requests == []

    def test_second_start_ignored(self, fake_registry):
        controller = self.make_controller()
        controller.on_start().result(timeout=10)

        assert controller.on_start() is None
        assert len(fake_registry.requests) == 1
        self.logger.warning.assert_called()

    def test_environment_captured_at_construction(self, fake_registry):
        environ = dict(self.env)
        controller = LifecycleController(environ=environ, dispatcher=self.dispatcher,
                                         logger=self.logger, metrics=self.metrics)
        self.controllers.append(controller)
        environ['SERVER_NAME'] = 'changed'

        controller.on_start().result(timeout=10)

        assert controller.config.server_name == 'lobby-1'

    def test_wait_returns_latest_outcome(self, fake_registry):
        controller = self.make_controller()
        assert controller.wait() is None

        controller.on_start()
        outcome = controller.wait(timeout=10)

        assert isinstance(outcome, DispatchOutcome)
        assert outcome.success is True

    def test_lifecycle_state_metric(self, fake_registry):
        controller = self.make_controller()
        assert self.metrics.registry.get_sample_value('announcer_lifecycle_state') == 0

        controller.on_start().result(timeout=10)
        assert self.metrics.registry.get_sample_value('announcer_lifecycle_state') == 2

        controller.on_stop().result(timeout=10)
        assert self.metrics.registry.get_sample_value('announcer_lifecycle_state') == 3


class TestLifecycleThreading:
    """Test that lifecycle calls never block on dispatch"""

    def _config(self, **kwargs):
        return AnnouncerConfig(
            proxy_host='proxy.local', proxy_port='8080',
            server_name='lobby-1', server_host='10.0.0.17', server_port='25565',
            **kwargs
        )

    def test_on_start_returns_before_dispatch_completes(self):
        release = threading.Event()
        dispatched = threading.Event()
        caller = threading.current_thread()
        worker_threads = []

        def slow_dispatch(descriptor, max_attempts, timeout):
            worker_threads.append(threading.current_thread())
            dispatched.set()
            release.wait(10)
            return DispatchOutcome(True, 1, 200, 'ok')

        dispatcher = Mock(spec=ResilientDispatcher)
        dispatcher.dispatch.side_effect = slow_dispatch
        controller = LifecycleController(config_loader=self._config,
                                         dispatcher=dispatcher,
                                         logger=Mock(spec=logging.Logger))

        future = controller.on_start()
        assert dispatched.wait(5)
        assert not future.done()

        release.set()
        assert future.result(timeout=5).success is True
        assert worker_threads[0] is not caller
        controller.shutdown()

    def test_dispatch_budgets(self):
        dispatcher = Mock(spec=ResilientDispatcher)
        dispatcher.dispatch.return_value = DispatchOutcome(True, 1, 200, 'ok')
        controller = LifecycleController(config_loader=self._config,
                                         dispatcher=dispatcher,
                                         logger=Mock(spec=logging.Logger))

        controller.on_start().result(timeout=5)
        controller.on_stop().result(timeout=5)
        controller.shutdown()

        register_call, unregister_call = dispatcher.dispatch.call_args_list
        assert register_call.args[0].intent is RequestIntent.REGISTER
        assert register_call.args[1:] == (2, 5.0)
        assert unregister_call.args[0].intent is RequestIntent.UNREGISTER
        assert unregister_call.args[1:] == (1, 3.0)

    def test_policy_delay_applied_to_own_dispatcher(self):
        config = self._config(policy=DispatchPolicy(retry_delay=0.05))
        controller = LifecycleController(config_loader=lambda: config,
                                         logger=Mock(spec=logging.Logger))
        controller.dispatcher.cancel()

        outcome = controller.on_start().result(timeout=5)

        assert controller.dispatcher.retry_delay == 0.05
        assert outcome.cancelled is True
        controller.shutdown()

    def test_report_failure_does_not_escape(self):
        dispatcher = Mock(spec=ResilientDispatcher)
        dispatcher.dispatch.return_value = DispatchOutcome(True, 1, 200, 'ok')
        logger = Mock(spec=logging.Logger)
        logger.info.side_effect = RuntimeError('sink closed')
        controller = LifecycleController(config_loader=self._config,
                                         dispatcher=dispatcher, logger=logger)

        outcome = controller.on_start().result(timeout=5)

        assert outcome.success is True
        logger.error.assert_called()
        controller.shutdown()

    def test_shutdown_with_cancel(self):
        dispatcher = Mock(spec=ResilientDispatcher)
        controller = LifecycleController(config_loader=self._config,
                                         dispatcher=dispatcher,
                                         logger=Mock(spec=logging.Logger))

        controller.shutdown(cancel=True)

        dispatcher.cancel.assert_called_once()

    def test_stop_after_shutdown_does_not_raise(self):
        dispatcher = Mock(spec=ResilientDispatcher)
        dispatcher.dispatch.return_value = DispatchOutcome(True, 1, 200, 'ok')
        logger = Mock(spec=logging.Logger)
        controller = LifecycleController(config_loader=self._config,
                                         dispatcher=dispatcher, logger=logger)
        controller.on_start().result(timeout=5)
        controller.shutdown()

        assert controller.on_stop() is None
        assert any('Cannot schedule unregister' in m for m in messages(logger.warning))

    def test_scalar_policy_file_disables(self, tmp_path):
        path = tmp_path / 'announcer.yaml'
        path.write_text(
            "proxy_host: proxy.local\n"
            "proxy_port: 8080\n"
            "server_name: lobby-1\n"
            "server_host: 10.0.0.17\n"
            "server_port: 25565\n"
            "policy: 5\n"
        )
        dispatcher = Mock(spec=ResilientDispatcher)
        logger = Mock(spec=logging.Logger)
        controller = LifecycleController(
            config_loader=lambda: AnnouncerConfig.from_file(path),
            dispatcher=dispatcher, logger=logger,
        )

        assert controller.on_start() is None
        assert controller.state is LifecycleState.DISABLED
        assert any('policy must be a mapping' in m for m in messages(logger.error))
        dispatcher.dispatch.assert_not_called()
        controller.shutdown()

    def test_cancelled_unregister_warning(self):
        dispatcher = Mock(spec=ResilientDispatcher)
        dispatcher.dispatch.side_effect = [
            DispatchOutcome(True, 1, 200, 'ok'),
            DispatchOutcome(False, 0, cancelled=True),
        ]
        logger = Mock(spec=logging.Logger)
        controller = LifecycleController(config_loader=self._config,
                                         dispatcher=dispatcher, logger=logger)
        controller.on_start().result(timeout=5)

        outcome = controller.on_stop().result(timeout=5)

        assert outcome.cancelled is True
        warnings = messages(logger.warning)
        assert any('lobby-1' in m and 'cancelled' in m for m in warnings)
        assert not any('None' in m for m in warnings)
        controller.shutdown()

    def test_dispatch_runs_in_lifecycle_context(self):
        seen = []

        def record_context(descriptor, max_attempts, timeout):
            context = LifecycleContext.active()
            seen.append((context.event, context.server, context.eid))
            return DispatchOutcome(True, 1, 200, 'ok')

        dispatcher = Mock(spec=ResilientDispatcher)
        dispatcher.dispatch.side_effect = record_context
        controller = LifecycleController(config_loader=self._config,
                                         dispatcher=dispatcher,
                                         logger=Mock(spec=logging.Logger))

        controller.on_start().result(timeout=5)
        controller.on_stop().result(timeout=5)
        controller.shutdown()

        (start_event, start_server, start_id), (stop_event, stop_server, stop_id) = seen
        assert (start_event, start_server) == ('register', 'lobby-1')
        assert (stop_event, stop_server) == ('unregister', 'lobby-1')
        assert start_id.startswith('register-')
        assert stop_id.startswith('unregister-')
