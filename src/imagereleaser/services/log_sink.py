"""Deferred log output for quiet runs."""

import logging
from typing import List


class BufferedLogSink(logging.Handler):
    """Keeps log records in memory until the caller decides their fate.

    Quiet runs attach one of these instead of a console handler. On a fatal
    error the caller replays the records into ``target``; on success they are
    discarded.
    """

    def __init__(self, target: logging.Handler, level: int = logging.DEBUG):
        super().__init__(level)
        self.target = target
        self.records: List[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord):
        self.records.append(record)

    def replay(self):
        self.acquire()
        try:
            records, self.records = self.records, []
        finally:
            self.release()
        for record in records:
            if record.levelno >= self.target.level:
                self.target.handle(record)
        self.target.flush()

    def discard(self):
        self.acquire()
        try:
            self.records = []
        finally:
            self.release()
