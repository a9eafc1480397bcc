"""Pytest configuration for fetch_backoff tests."""
import threading

import pytest


class RecordingLogger:
    """Structured logger that keeps every call."""

    def __init__(self):
        self.records = []

    def debug(self, msg, **fields):
        self.records.append(("debug", msg, fields))

    def info(self, msg, **fields):
        self.records.append(("info", msg, fields))

    def warning(self, msg, **fields):
        self.records.append(("warning", msg, fields))

    def error(self, msg, **fields):
        self.records.append(("error", msg, fields))

    def messages(self, level=None):
        return [msg for lvl, msg, _ in self.records if level is None or lvl == level]


class RecordingSpan:
    def __init__(self, name, attributes=None, parent=None):
        self.name = name
        self.attributes = dict(attributes or {})
        self.parent = parent
        self.status = None
        self.events = []
        self.ended = False

    def end(self):
        self.ended = True

    def set_attributes(self, attributes):
        self.attributes.update(attributes)

    def set_status(self, code, description=""):
        self.status = (code, description)

    def add_event(self, name, attributes=None):
        self.events.append((name, dict(attributes or {})))


class RecordingTracer:
    def __init__(self):
        self.spans = []

    def start_span(self, name, attributes=None, parent=None):
        span = RecordingSpan(name, attributes, parent)
        self.spans.append(span)
        return span


class RecordingMetrics:
    def __init__(self):
        self._lock = threading.Lock()
        self.attempts = []
        self.retries = []
        self.completions = []

    def record_attempt(self, method, status_code, duration, error):
        with self._lock:
            self.attempts.append((method, status_code, error))

    def record_retry(self, method, reason, attempt_number):
        with self._lock:
            self.retries.append((method, reason, attempt_number))

    def record_request_complete(self, method, status_code, total_duration, total_attempts, success):
        with self._lock:
            self.completions.append((method, status_code, total_attempts, success))


@pytest.fixture
def recording_logger():
    """Structured logger sink that records calls."""
    return RecordingLogger()


@pytest.fixture
def recording_tracer():
    """Tracer sink that records spans."""
    return RecordingTracer()


@pytest.fixture
def recording_metrics():
    """Metrics sink that records calls."""
    return RecordingMetrics()
