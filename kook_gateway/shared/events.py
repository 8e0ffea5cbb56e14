"""
MODULE OVERVIEW:
The subscribe/notify surface of the gateway.

WHAT IS HAPPENING HERE:
The session manager owns one `EventDispatcher` and publishes every category
through it (`ready`, `error`, `message`, `pinned-message`, ...). Consumers
never subclass anything; they register plain functions or coroutine functions.
Coroutine listeners are scheduled as tasks on the running loop and we keep a
strong reference until they finish so they are not garbage collected mid-flight.
"""
import asyncio
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Set, Union

from loguru import logger

Listener = Callable[[Any], Union[None, Awaitable[None]]]
WildcardListener = Callable[[str, Any], Union[None, Awaitable[None]]]


class EventDispatcher:
    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._once: Dict[str, Set[Listener]] = defaultdict(set)
        self._wildcards: List[WildcardListener] = []
        self._tasks: Set[asyncio.Task] = set()

    def on(self, name: str, fn: Listener | None = None):
        """Registers `fn` for `name`. Without `fn`, works as a decorator."""
        if fn is None:
            def decorator(func: Listener) -> Listener:
                self._listeners[name].append(func)
                return func
            return decorator
        self._listeners[name].append(fn)
        return fn

    def once(self, name: str, fn: Listener) -> Listener:
        self._listeners[name].append(fn)
        self._once[name].add(fn)
        return fn

    def off(self, name: str, fn: Listener) -> None:
        listeners = self._listeners.get(name, [])
        if fn in listeners:
            listeners.remove(fn)
        self._once.get(name, set()).discard(fn)

    def on_any(self, fn: WildcardListener) -> WildcardListener:
        self._wildcards.append(fn)
        return fn

    def listener_count(self, name: str) -> int:
        return len(self._listeners.get(name, []))

    def emit(self, name: str, payload: Any = None) -> int:
        """Notifies every listener of `name`, then the wildcards. Returns how many ran."""
        listeners = list(self._listeners.get(name, []))
        for fn in listeners:
            if fn in self._once.get(name, set()):
                self.off(name, fn)
            self._invoke(name, fn, payload)

        for fn in list(self._wildcards):
            self._invoke(name, fn, name, payload)

        return len(listeners) + len(self._wildcards)

    def _invoke(self, name: str, fn: Callable, *args: Any) -> None:
        try:
            result = fn(*args)
        except Exception as e:
            logger.error(f"Error in listener for '{name}': {e}")
            return
        if asyncio.iscoroutine(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Error in async listener: {task.exception()}")
