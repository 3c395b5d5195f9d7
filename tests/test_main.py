import logging
import os
import signal
import tempfile
import unittest
from unittest import mock

from autonord.core.instance_lock import InstanceLock
from autonord.interface_selector import NoActiveInterface
from autonord.main import Shutdown, build_argparser, config_from_args, main, setup_logging


class TestConfig(unittest.TestCase):
    def test_defaults(self):
        config = config_from_args(build_argparser().parse_args([]))
        self.assertEqual(config.vpn_command, 'nordvpn')
        self.assertEqual(config.sample_interval, 5.0)
        self.assertEqual(config.refresh_interval, 0.5)
        self.assertTrue(config.menu_on_start)
        self.assertTrue(config.replace_running)
        self.assertFalse(config.web_enabled)
        self.assertTrue(config.speed_file.endswith('network_speed.tmp'))

    def test_flags(self):
        args = build_argparser().parse_args(['-i', 'wlan0', '--interval', '2', '--no-speed-file',
                                             '--no-replace', '--skip-menu', '--web', '--web-port', '9000'])
        config = config_from_args(args)
        self.assertEqual(config.interface, 'wlan0')
        self.assertEqual(config.sample_interval, 2.0)
        self.assertIsNone(config.speed_file)
        self.assertFalse(config.replace_running)
        self.assertFalse(config.menu_on_start)
        self.assertTrue(config.web_enabled)
        self.assertEqual(config.web_port, 9000)

    def test_rejects_non_positive_interval(self):
        with self.assertRaises(SystemExit):
            config_from_args(build_argparser().parse_args(['--interval', '0']))


class TestShutdown(unittest.TestCase):
    def test_steps_run_once_in_reverse(self):
        calls = []
        shutdown = Shutdown()
        shutdown.add(lambda: calls.append('lock'))
        shutdown.add(lambda: calls.append('sampler'))
        shutdown.close()
        shutdown.close()
        self.assertEqual(calls, ['sampler', 'lock'])
        self.assertTrue(shutdown.closed)

    def test_failing_step_does_not_block_others(self):
        calls = []

        def broken():
            raise RuntimeError("boom")

        shutdown = Shutdown()
        shutdown.add(lambda: calls.append('lock'))
        shutdown.add(broken)
        shutdown.close()
        self.assertEqual(calls, ['lock'])

    def test_close_from_inside_a_step_returns(self):
        calls = []
        shutdown = Shutdown()
        shutdown.add(lambda: calls.append('lock'))
        shutdown.add(shutdown.close)
        with shutdown._lock:
            # A signal arriving while the lock is held re-enters close()
            shutdown.close()
        self.assertEqual(calls, ['lock'])

    def test_signal_runs_steps_then_exits(self):
        calls = []
        shutdown = Shutdown()
        shutdown.add(lambda: calls.append('sampler'))
        with self.assertRaises(SystemExit) as ctx:
            shutdown._on_signal(signal.SIGTERM, None)
        self.assertEqual(ctx.exception.code, 128 + signal.SIGTERM)
        shutdown.close()
        self.assertEqual(calls, ['sampler'])

    @mock.patch('autonord.main.signal.signal')
    @mock.patch('autonord.main.atexit.register')
    def test_install_registers_exit_paths(self, register, set_handler):
        shutdown = Shutdown()
        shutdown.install()
        register.assert_called_once_with(shutdown.close)
        set_handler.assert_any_call(signal.SIGTERM, shutdown._on_signal)
        set_handler.assert_any_call(signal.SIGHUP, shutdown._on_signal)


class TestSetupLogging(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = logging.getLogger()
        self.handlers = list(self.root.handlers)
        self.level = self.root.level

    def tearDown(self):
        for handler in self.root.handlers[:]:
            if handler not in self.handlers:
                self.root.removeHandler(handler)
                handler.close()
        self.root.setLevel(self.level)
        self.tmp.cleanup()

    def test_file_handler_format(self):
        path = os.path.join(self.tmp.name, 'logs', 'autonord.log')
        setup_logging(path)
        handler = self.root.handlers[-1]
        self.assertIsInstance(handler, logging.FileHandler)
        self.assertEqual(handler.formatter._fmt, '%(asctime)s - %(levelname)s - %(message)s')
        logging.getLogger('autonord.core.sampler').info("Sampling eth0 every 5.0s")
        handler.flush()
        with open(path) as f:
            line = f.read().strip()
        self.assertRegex(line, r"^\d{4}-\d{2}-\d{2} [\d:,]+ - INFO - Sampling eth0 every 5\.0s$")

    def test_falls_back_to_stderr(self):
        blocker = os.path.join(self.tmp.name, 'not-a-dir')
        open(blocker, 'w').close()
        setup_logging(os.path.join(blocker, 'autonord.log'), verbose=True)
        handler = self.root.handlers[-1]
        self.assertNotIsInstance(handler, logging.FileHandler)
        self.assertEqual(self.root.level, logging.DEBUG)


@mock.patch('autonord.main.Shutdown.install')
@mock.patch('autonord.main.setup_logging')
class TestMain(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.argv = ['--lock-file', os.path.join(self.tmp.name, 'autonord.lock'),
                     '--log-file', os.path.join(self.tmp.name, 'autonord.log'),
                     '--speed-file', os.path.join(self.tmp.name, 'speed')]

    def tearDown(self):
        self.tmp.cleanup()

    @mock.patch('autonord.main.find_active_interface', side_effect=NoActiveInterface("No active interface found."))
    def test_no_active_interface_exits_non_zero(self, _find, _logging, _install):
        self.assertEqual(main(self.argv), 1)

    @mock.patch('autonord.main.Controller')
    @mock.patch('autonord.main.KeyReader')
    @mock.patch('autonord.main.ThroughputSampler')
    @mock.patch('autonord.main.find_active_interface', return_value='eth0')
    def test_runs_controller_and_cleans_up(self, _find, sampler_cls, _keys, controller_cls, _logging, _install):
        controller_cls.return_value.run.return_value = 0
        controller_cls.return_value.fatal_error = None
        self.assertEqual(main(self.argv), 0)
        sampler_cls.return_value.start.assert_called_once_with()
        sampler_cls.return_value.stop.assert_called_once_with()
        # Lock is released, so a new instance can take it
        lock = InstanceLock(self.argv[1])
        self.assertIsNone(lock.try_acquire())
        lock.release()


if __name__ == '__main__':
    unittest.main()
