"""Error types raised by the data source and the fan-out channels."""


class FetchError(Exception):
    """A data source operation failed.

    Covers transport failures, HTTP error statuses, malformed payloads and
    errors reported by the remote node alike; `operation` names the call.
    """

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation}: {message}")
        self.operation = operation
        self.message = message


class ChannelClosed(Exception):
    """Raised by `Subscription.recv` once the channel is closed and drained."""
