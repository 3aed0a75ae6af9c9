"""Tests for acmevault._internal.log."""
import io
import logging
import logging.handlers
import os
import shutil
import sys
import tempfile
import unittest
from unittest import mock

import pytest

from acmevault import errors
from acmevault._internal import constants
from acmevault._internal import log


class PostArgParseSetupTest(unittest.TestCase):
    """Tests for acmevault._internal.log.post_arg_parse_setup."""

    def setUp(self):
        self.tempdir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tempdir)
        self.root_logger = logging.getLogger()
        saved_handlers, saved_level = list(self.root_logger.handlers), self.root_logger.level
        self.addCleanup(self._restore_root, saved_handlers, saved_level)

        self.buffer = log.StartupBuffer()
        self.stream_handler = logging.StreamHandler(io.StringIO())
        self.stream_handler.set_name(log.STDERR_HANDLER_NAME)
        self.stream_handler.setLevel(constants.QUIET_LOGGING_LEVEL)
        self.root_logger.setLevel(logging.DEBUG)
        self.root_logger.addHandler(self.buffer)
        self.root_logger.addHandler(self.stream_handler)

        self.config = mock.MagicMock(logs_dir=os.path.join(self.tempdir, 'logs'),
                                     max_log_backups=0, quiet=False, verbose_count=1,
                                     debug=False)

    def _restore_root(self, handlers, level):
        for handler in list(self.root_logger.handlers):
            if handler not in handlers:
                self.root_logger.removeHandler(handler)
                handler.close()
        self.root_logger.setLevel(level)

    def _setup(self):
        with mock.patch('acmevault._internal.log.sys') as mock_sys:
            log.post_arg_parse_setup(self.config)
        return mock_sys

    def test_buffered_records_reach_log_file(self):
        logging.getLogger('acmevault.test').debug('buffered message')
        mock_sys = self._setup()

        log_path = os.path.join(self.config.logs_dir, constants.LOG_FILE_NAME)
        for handler in self.root_logger.handlers:
            handler.flush()
        with open(log_path) as f:
            assert 'buffered message' in f.read()
        assert self.buffer not in self.root_logger.handlers
        assert self.stream_handler.level == logging.DEBUG
        assert mock_sys.excepthook.keywords['log_path'] == log_path

    def test_no_logs_dir(self):
        logging.getLogger('acmevault.test').debug('dropped message')
        self.config.logs_dir = None
        self.config.quiet = True
        mock_sys = self._setup()

        assert not any(isinstance(handler, logging.handlers.RotatingFileHandler)
                       for handler in self.root_logger.handlers)
        assert self.buffer.buffer == []
        assert self.stream_handler.level == constants.QUIET_LOGGING_LEVEL
        assert mock_sys.excepthook.keywords['log_path'] is None

    def test_new_file_per_run(self):
        self.config.max_log_backups = 2
        os.makedirs(self.config.logs_dir)
        log_path = os.path.join(self.config.logs_dir, constants.LOG_FILE_NAME)
        with open(log_path, 'w') as f:
            f.write('previous run\n')
        self._setup()
        assert os.path.exists(log_path + '.1')

    def test_requires_pre_arg_parse_setup(self):
        self.root_logger.removeHandler(self.stream_handler)
        with pytest.raises(errors.Error, match='pre_arg_parse_setup'):
            self._setup()


class StartupBufferTest(unittest.TestCase):
    """Tests for acmevault._internal.log.StartupBuffer."""

    def setUp(self):
        self.buffer = log.StartupBuffer()
        self.buffer.setFormatter(logging.Formatter(log.FILE_FMT))

    def test_never_flushes_by_itself(self):
        for i in range(50):
            self.buffer.handle(logging.makeLogRecord({'msg': f'record {i}'}))
        assert len(self.buffer.buffer) == 50

    def test_replay_respects_target_level(self):
        for level in (logging.DEBUG, logging.WARNING):
            self.buffer.handle(logging.makeLogRecord({'msg': 'x', 'levelno': level}))
        target = mock.MagicMock(level=logging.INFO)
        self.buffer.replay(target)
        assert target.handle.call_count == 1
        assert self.buffer.buffer == []

    def test_dump_empty(self):
        assert self.buffer.dump() is None

    def test_dump(self):
        self.buffer.handle(logging.makeLogRecord({'msg': 'kept'}))
        path = self.buffer.dump()
        self.addCleanup(os.remove, path)
        assert os.stat(path).st_mode & 0o777 == 0o600
        with open(path) as f:
            assert 'kept' in f.read()


class ExceptHookTest(unittest.TestCase):
    """Tests for acmevault._internal.log.except_hook."""

    @staticmethod
    def _hook(error, **kwargs):
        kwargs.setdefault('debug', False)
        kwargs.setdefault('quiet', False)
        kwargs.setdefault('log_path', '/var/log/acmevault.log')
        with pytest.raises(SystemExit) as exit_info:
            log.except_hook(type(error), error, None, **kwargs)
        return exit_info.value.code

    def test_known_error(self):
        with self.assertLogs('acmevault._internal.log', 'ERROR') as logs:
            code = self._hook(errors.Error('2 renew failure(s), 0 parse failure(s)'))
        assert '/var/log/acmevault.log' in code
        assert any('2 renew failure(s)' in line for line in logs.output)

    def test_unexpected_error(self):
        with self.assertLogs('acmevault._internal.log', 'ERROR') as logs:
            self._hook(ValueError('boom'), log_path=None)
        assert any('Unexpected error: ValueError: boom' in line for line in logs.output)

    def test_quiet(self):
        with self.assertLogs('acmevault._internal.log', 'ERROR'):
            assert self._hook(errors.Error('failed'), quiet=True) == 1

    def test_keyboard_interrupt(self):
        with self.assertLogs('acmevault._internal.log', 'ERROR') as logs:
            assert self._hook(KeyboardInterrupt()) == 1
        assert any('Interrupted' in line for line in logs.output)

    def test_startup_buffer_dumped(self):
        buffer = mock.MagicMock(spec=log.StartupBuffer)
        buffer.dump.return_value = '/tmp/acmevault-x.log'
        with self.assertLogs('acmevault._internal.log', 'ERROR'):
            code = self._hook(errors.Error('bad option'), log_path=None, buffer=buffer)
        assert '/tmp/acmevault-x.log' in code


class ExitWithAdviceTest(unittest.TestCase):
    """Tests for acmevault._internal.log.exit_with_advice."""

    def test_without_log_file(self):
        with pytest.raises(SystemExit) as exit_info:
            log.exit_with_advice(None)
        assert '-v' in exit_info.value.code


if __name__ == "__main__":
    sys.exit(pytest.main(sys.argv[1:] + [__file__]))  # pragma: no cover
