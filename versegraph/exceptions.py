"""Exceptions raised by the versegraph engine.

All versegraph-specific exceptions inherit from VerseGraphError. Edit
conflicts between the local cache and the remote store are not errors: the
reconciler resolves them by last-writer-wins.
"""


class VerseGraphError(Exception):
    """Base exception for versegraph errors."""


class NodeNotFoundError(VerseGraphError):
    """A seed or node id does not exist in the remote store.

    Non-fatal: batch operations skip the id and continue.
    """

    def __init__(self, node_id: str, kind: str | None = None):
        self.node_id = node_id
        self.kind = kind
        label = f"{kind} node" if kind else "node"
        super().__init__(f"{label} {node_id!r} not found")


class RemoteUnavailableError(VerseGraphError):
    """The remote graph store could not be reached or failed a request.

    Callers degrade to cache-only operation where they can.
    """


class OperationAbortedError(VerseGraphError):
    """An operation was cancelled through its CancellationToken.

    Never surfaced to the user as an error.
    """

    def __init__(self, reason: str = "cancelled"):
        self.reason = reason
        super().__init__(f"operation aborted: {reason}")


class FetchTimeoutError(VerseGraphError):
    """The fetch orchestrator's watchdog fired before the operation finished."""

    def __init__(self, operation: str, timeout_ms: int):
        self.operation = operation
        self.timeout_ms = timeout_ms
        super().__init__(f"{operation} timed out after {timeout_ms} ms")


class LocalCacheError(VerseGraphError):
    """Reading or writing the local cache failed.

    Raised by cache implementations on I/O errors or corrupted data.
    """


class ConfigError(VerseGraphError):
    """The configuration file has invalid TOML syntax or cannot be read."""
