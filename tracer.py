import functools
import inspect
import os
import re
import threading

from config import TRACE_ENABLED


def _sanitize_repr(value):
    """
    Cleans the string representation of an object by removing memory addresses
    and other volatile information.
    """
    rep = repr(value)
    rep = re.sub(r'\s+at\s+0x[0-9a-fA-F]+', '', rep)
    return rep


class Tracer:
    """
    Records the execution flow of decorated functions as nested call trees.

    Sessions run concurrently, so every thread (or greenlet, once eventlet has
    patched threading) keeps its own call stack. A call tree joins the shared
    log when its root call returns.
    """
    def __init__(self, enabled: bool = False):
        self.enabled = enabled
        self._lock = threading.Lock()
        self._local = threading.local()
        self.trace_log = []

    def enable(self):
        self.enabled = True

    def disable(self):
        self.enabled = False

    def reset(self):
        """Clears the collected trace log."""
        with self._lock:
            self.trace_log = []
        self._local = threading.local()

    @property
    def call_stack(self) -> list:
        stack = getattr(self._local, "stack", None)
        if stack is None:
            stack = self._local.stack = []
        return stack

    def start_trace(self, module, func_name):
        entry = {"function": f"{module}.{func_name}", "thread": threading.current_thread().name, "nested_calls": []}
        stack = self.call_stack
        if stack:
            stack[-1]["nested_calls"].append(entry)
        stack.append(entry)

    def end_trace(self, return_value, is_exception=False):
        stack = self.call_stack
        if not stack:
            return

        entry = stack.pop()
        if not entry["nested_calls"]:
            del entry["nested_calls"]

        if is_exception:
            entry["exception"] = _sanitize_repr(return_value)
        elif return_value is not None:
            is_empty_container = isinstance(return_value, (list, dict, tuple, str)) and not return_value
            if not is_empty_container:
                entry["return_value"] = _sanitize_repr(return_value)

        if not stack:
            with self._lock:
                self.trace_log.append(entry)

    def add_event(self, entry: dict):
        stack = self.call_stack
        if stack:
            stack[-1]["nested_calls"].append(entry)
        else:
            with self._lock:
                self.trace_log.append(entry)

    def get_trace(self):
        """Returns a copy of the completed call trees."""
        with self._lock:
            return list(self.trace_log)


# Global instance of the tracer
global_tracer = Tracer(enabled=TRACE_ENABLED)


def log_event(event_name: str, details: dict):
    """
    Manually logs a custom event to the global tracer.
    """
    if not global_tracer.enabled:
        return
    caller_frame = inspect.stack()[1]
    module_name = os.path.basename(caller_frame.filename).replace(".py", "")
    global_tracer.add_event({"type": "EVENT", "event_name": f"{module_name}.{event_name}", "details": details})


def trace(func):
    """
    A decorator that logs the entry and exit of a function call
    to the global_tracer in a nested format.
    """
    if func.__module__ == 'tracer':
        return func

    module_name = os.path.basename(inspect.getfile(func)).replace(".py", "")

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        if not global_tracer.enabled:
            return func(*args, **kwargs)

        global_tracer.start_trace(module_name, func.__qualname__)
        try:
            result = func(*args, **kwargs)
            global_tracer.end_trace(result)
            return result
        except Exception as e:
            global_tracer.end_trace(e, is_exception=True)
            raise

    return wrapper
