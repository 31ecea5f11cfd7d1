from google.protobuf.duration_pb2 import Duration
from google.protobuf.timestamp_pb2 import Timestamp


class Timer:
    """Timer for a block of (possibly awaited) work, usable
    as a context manager or through tic/toc. Start and end are
    protobuf Timestamps so they serialize the way envoy does.
    """

    def __init__(self):
        self._start, self._end = Timestamp(), Timestamp()
        self._running = False

    def __repr__(self) -> str:
        return f"{self.started_iso()}, {self.duration_ns()}"

    def __enter__(self):
        return self.tic()

    def __exit__(self, exc_type, exc_value, exc_trace):
        self.toc()

    def tic(self):
        self._start.GetCurrentTime()
        self._running = True
        return self

    def toc(self):
        self._end.GetCurrentTime()
        self._running = False
        return self

    @property
    def running(self) -> bool:
        return self._running

    def started(self) -> Timestamp:
        return self._start

    def started_iso(self) -> str:
        return self._start.ToJsonString()

    def duration(self) -> Duration:
        # a running timer reports the time elapsed so far
        end = Timestamp()
        if self._running:
            end.GetCurrentTime()
        else:
            end.CopyFrom(self._end)
        duration = Duration()
        duration.FromNanoseconds(end.ToNanoseconds() - self._start.ToNanoseconds())
        return duration

    def duration_ns(self) -> int:
        return self.duration().ToNanoseconds()

    def duration_ms(self) -> float:
        return self.duration_ns() * 1.0e-6
