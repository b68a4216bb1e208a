"""Fake renderer / dispatcher collaborators for dispatch tests."""

import threading


class FakeRenderer:
    """Renders a document to a small byte string; can be told to fail."""

    def __init__(self, fail_times: int = 0):
        self._lock = threading.Lock()
        self.fail_times = fail_times
        self.documents = []

    def render(self, document) -> bytes:
        with self._lock:
            if self.fail_times > 0:
                self.fail_times -= 1
                raise RuntimeError("renderer unavailable")
            self.documents.append(document)
        return f"%PDF {document.number}".encode()


class FakeDispatcher:
    """Records messages; fails the first ``fail_times`` sends."""

    def __init__(self, fail_times: int = 0, raise_on_fail: bool = False):
        self._lock = threading.Lock()
        self.fail_times = fail_times
        self.raise_on_fail = raise_on_fail
        self.attempts = 0
        self.sent = []

    def send(self, message) -> bool:
        with self._lock:
            self.attempts += 1
            if self.fail_times > 0:
                self.fail_times -= 1
                if self.raise_on_fail:
                    raise ConnectionError("smtp down")
                return False
            self.sent.append(message)
            return True
