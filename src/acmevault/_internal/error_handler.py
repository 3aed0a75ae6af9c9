"""Registers functions to be called when a block of asynchronous code exits."""
import functools
import inspect
import logging
import traceback
from types import TracebackType
from typing import Any
from typing import Callable
from typing import List
from typing import Optional
from typing import Type

logger = logging.getLogger(__name__)


class ExitHandler:
    """Async context manager for running code that must be cleaned up.

    The context manager allows you to register functions, plain or
    coroutine, that will be called when the block exits, whether it
    completed or raised.
    Usage::

        handler = ExitHandler(cleanup1_func, *cleanup1_args, **cleanup1_kwargs)
        handler.register(cleanup2_func, *cleanup2_args, **cleanup2_kwargs)

        async with handler:
            await do_something()

    The cleanup functions are called in last in first out order, then any
    exception raised out of do_something propagates unchanged.

    Each registered cleanup function is called exactly once. If a registered
    function raises an exception, it is logged and the next function is called.

    """
    def __init__(self, func: Optional[Callable[..., Any]] = None,
                 *args: Any, **kwargs: Any) -> None:
        self.funcs: List[Callable[[], Any]] = []
        if func is not None:
            self.register(func, *args, **kwargs)

    async def __aenter__(self) -> 'ExitHandler':
        return self

    async def __aexit__(self, exec_type: Optional[Type[BaseException]],
                        exec_value: Optional[BaseException],
                        trace: Optional[TracebackType]) -> bool:
        if exec_type is not None:
            logger.debug("Encountered exception:\n%s", "".join(
                traceback.format_exception(exec_type, exec_value, trace)))
        await self._call_registered()
        return False

    def register(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        """Sets func to be run with the given arguments during cleanup.

        :param function func: function or coroutine function to be called

        """
        self.funcs.append(functools.partial(func, *args, **kwargs))

    async def _call_registered(self) -> None:
        """Calls all registered functions"""
        logger.debug("Calling registered functions")
        while self.funcs:
            try:
                result = self.funcs[-1]()
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # pylint: disable=broad-except
                output = traceback.format_exception_only(type(exc), exc)
                logger.error("Encountered exception during recovery: %s",
                             ''.join(output).rstrip())
            self.funcs.pop()
