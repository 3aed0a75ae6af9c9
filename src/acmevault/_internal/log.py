"""Logging setup for acmevault.

Logging is configured in two steps. `pre_arg_parse_setup` runs before the
command line is parsed: it sends warnings to stderr and keeps every other
record in a `StartupBuffer`. `post_arg_parse_setup` then applies the
requested verbosity and, when ``--logs-dir`` is given, replays the buffer
into the rotating log file. If acmevault dies before that, the buffer is
dumped to a private temporary file whose path is shown to the user.

"""
import functools
import logging
import logging.handlers
import os
import sys
import tempfile
import traceback
from types import TracebackType
from typing import Optional
from typing import Tuple
from typing import Type

from acmevault import errors
from acmevault._internal import constants
from acmevault._internal.configuration import NamespaceConfig

CLI_FMT = "%(message)s"
FILE_FMT = "%(asctime)s:%(levelname)s:%(name)s:%(message)s"

LOG_FILE_MAX_BYTES = 2 ** 20

STDERR_HANDLER_NAME = "acmevault-stderr"

logger = logging.getLogger(__name__)


class StartupBuffer(logging.handlers.BufferingHandler):
    """Holds the records emitted before logging is fully configured.

    The buffer never flushes on its own; it is either replayed into a
    handler or dumped to a temporary file.

    """
    def __init__(self) -> None:
        super().__init__(capacity=0)
        self.setLevel(logging.DEBUG)

    def shouldFlush(self, record: logging.LogRecord) -> bool:
        return False

    def replay(self, target: logging.Handler) -> None:
        """Hand every buffered record to ``target`` and empty the buffer."""
        self.acquire()
        try:
            for record in self.buffer:
                if record.levelno >= target.level:
                    target.handle(record)
            self.buffer.clear()
        finally:
            self.release()

    def dump(self) -> Optional[str]:
        """Write the buffered records to a new temporary file.

        :returns: path of the file, or ``None`` when nothing was buffered

        """
        if not self.buffer:
            return None
        fd, path = tempfile.mkstemp(prefix='acmevault-', suffix='.log')
        handler = logging.StreamHandler(os.fdopen(fd, 'w'))
        handler.setFormatter(logging.Formatter(FILE_FMT))
        try:
            self.replay(handler)
        finally:
            handler.stream.close()
            handler.close()
        return path


def pre_arg_parse_setup() -> None:
    """Log warnings to stderr and buffer everything else.

    `sys.excepthook` is replaced so that a crash during argument parsing
    still leaves the buffered records on disk.

    """
    buffer = StartupBuffer()
    stream_handler = logging.StreamHandler()
    stream_handler.set_name(STDERR_HANDLER_NAME)
    stream_handler.setFormatter(logging.Formatter(CLI_FMT))
    stream_handler.setLevel(constants.QUIET_LOGGING_LEVEL)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(buffer)
    root_logger.addHandler(stream_handler)

    sys.excepthook = functools.partial(
        except_hook, debug='--debug' in sys.argv,
        quiet='--quiet' in sys.argv or '-q' in sys.argv, buffer=buffer)


def post_arg_parse_setup(config: NamespaceConfig) -> None:
    """Apply the parsed logging options.

    Expects the two handlers installed by `pre_arg_parse_setup` on the root
    logger. The startup buffer is replayed into the log file when
    ``config.logs_dir`` is set and discarded otherwise.

    :param NamespaceConfig config: Configuration object

    """
    root_logger = logging.getLogger()
    buffers = [h for h in root_logger.handlers if isinstance(h, StartupBuffer)]
    streams = [h for h in root_logger.handlers if h.get_name() == STDERR_HANDLER_NAME]
    if not buffers or not streams:
        raise errors.Error('pre_arg_parse_setup must run before post_arg_parse_setup')
    buffer, stream_handler = buffers[0], streams[0]
    root_logger.removeHandler(buffer)

    file_path: Optional[str] = None
    if config.logs_dir:
        file_handler, file_path = setup_log_file_handler(
            config, constants.LOG_FILE_NAME, FILE_FMT)
        root_logger.addHandler(file_handler)
        buffer.replay(file_handler)
    buffer.close()

    if config.quiet:
        level = constants.QUIET_LOGGING_LEVEL
    else:
        level = max(constants.DEFAULT_LOGGING_LEVEL - config.verbose_count * 10,
                    logging.DEBUG)
    stream_handler.setLevel(level)
    logger.debug('stderr logging level set at %d', level)

    if file_path and not config.quiet:
        print(f'Writing debug log to {file_path}', file=sys.stderr)

    sys.excepthook = functools.partial(
        except_hook, debug=config.debug, quiet=config.quiet, log_path=file_path)


def setup_log_file_handler(config: NamespaceConfig, logfile: str,
                           fmt: str) -> Tuple[logging.Handler, str]:
    """Open the rotating debug log in ``config.logs_dir``.

    Every invocation starts a new file when backups are kept.

    :returns: file handler and absolute path to the log file
    :raises .Error: if the directory or file cannot be created

    """
    log_file_path = os.path.join(config.logs_dir, logfile)
    try:
        os.makedirs(config.logs_dir, 0o700, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            log_file_path, maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=config.max_log_backups)
    except OSError as error:
        raise errors.Error(f'Unable to write the log file: {error}')
    if config.max_log_backups and os.path.getsize(log_file_path):
        handler.doRollover()
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(fmt=fmt))
    return handler, log_file_path


def except_hook(exc_type: Type[BaseException], exc_value: BaseException,
                trace: Optional[TracebackType], debug: bool, quiet: bool,
                log_path: Optional[str] = None,
                buffer: Optional[StartupBuffer] = None) -> None:
    """Report an uncaught exception and exit with a nonzero status.

    acmevault errors are reported by their message alone; anything else
    is unexpected and gets its exception line. The traceback reaches
    stderr only with ``debug``. When ``buffer`` is given, the records
    logged so far, traceback included, are dumped and their file becomes
    ``log_path``.

    """
    exc_info = (exc_type, exc_value, trace)
    if exc_type is KeyboardInterrupt:
        logger.error('Interrupted.')
        sys.exit(1)
    if debug or not issubclass(exc_type, Exception):
        logger.error('Exiting abnormally:', exc_info=exc_info)
    else:
        logger.debug('Exiting abnormally:', exc_info=exc_info)
        if issubclass(exc_type, errors.Error):
            logger.error(str(exc_value))
        else:
            logger.error('Unexpected error: %s',
                         ''.join(traceback.format_exception_only(exc_type, exc_value)).rstrip())
    if buffer is not None:
        log_path = buffer.dump() or log_path
    if quiet:
        sys.exit(1)
    exit_with_advice(log_path)


def exit_with_advice(log_path: Optional[str]) -> None:
    """Exit pointing at the debug log, or at ``-v`` when there is none."""
    if log_path:
        sys.exit(f'Details are in {log_path}.')
    sys.exit('Run again with -v or --debug for details.')
