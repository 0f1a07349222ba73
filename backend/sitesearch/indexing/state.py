import threading

STOPPED_BY_USER = "Indexing stopped by user"


class CrawlInterrupted(Exception):
    """Raised inside crawl tasks once a stop has been requested."""

    def __init__(self, message: str = STOPPED_BY_USER):
        super().__init__(message)


class CrawlState:
    """
    Process-wide crawl flags.

    ``try_start`` is a compare-and-swap: at most one crawl run is in progress.
    The stop flag is the only cancellation signal crawl tasks observe.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._in_progress = False
        self._stop_requested = False

    def try_start(self) -> bool:
        with self._lock:
            if self._in_progress:
                return False
            self._in_progress = True
            self._stop_requested = False
            return True

    def request_stop(self) -> None:
        with self._lock:
            self._stop_requested = True

    def is_stop_requested(self) -> bool:
        return self._stop_requested

    def is_in_progress(self) -> bool:
        return self._in_progress

    def check_stop(self) -> None:
        if self._stop_requested:
            raise CrawlInterrupted()

    def reset(self) -> None:
        with self._lock:
            self._in_progress = False
            self._stop_requested = False
