from __future__ import annotations


class CanvasdexError(Exception):
    """Base class for errors raised by canvasdex."""


class NotIndexedError(CanvasdexError):
    """No snapshot exists yet and the first scan failed; retry later."""


class InvalidKeyError(CanvasdexError, ValueError):
    def __init__(self, key_id: object) -> None:
        super().__init__(f"Invalid key id {key_id!r} (expected 0-9999)")
        self.key_id = key_id


class RPCError(CanvasdexError, RuntimeError):
    def __init__(self, code: int | None, message: str | None) -> None:
        super().__init__(f"RPC error code={code} message={message}")
        self.code = code
        self.message = message


class RateLimited(CanvasdexError):
    """HTTP 429 from the detail API. `retry_after` is seconds, if the server said."""

    def __init__(self, url: str, retry_after: float | None = None) -> None:
        super().__init__(f"429 Too Many Requests for {url} (retry_after={retry_after})")
        self.url = url
        self.retry_after = retry_after


class SnapshotError(CanvasdexError):
    pass


class ScanError(CanvasdexError):
    """Every chunk of the requested range failed; nothing usable was scanned."""
