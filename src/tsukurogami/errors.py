"""Error taxonomy shared by the registry client, notifier and reconciler."""

from typing import Iterable, Optional


class BridgeError(Exception):
    """Base class for every error raised by tsukurogami."""


class TransportError(BridgeError):
    """Network or TLS failure talking to a downstream server."""


class ProtocolError(BridgeError):
    """A downstream response could not be decoded or was empty."""


class RemoteError(BridgeError):
    """A downstream call answered with an unexpected HTTP status."""

    def __init__(self, operation: str, code: int, detail: str = ""):
        self.operation = operation
        self.code = code
        self.detail = detail
        message = f"{operation}: RPC failed (code: {code})"
        if detail:
            message = f"{message} {detail}"
        super().__init__(message)


class ValidationError(BridgeError):
    """An inbound request is missing required query parameters."""

    def __init__(self, missing: Iterable[str]):
        self.missing = list(missing)
        names = ", ".join(f'"{name}"' for name in self.missing)
        super().__init__(f"missing {names} parameter")


class UnrecognizedEventError(BridgeError):
    def __init__(self, status: str):
        self.status = status
        super().__init__(f"unknown status: {status}")


class ReconcileError(BridgeError):
    """A lifecycle operation failed for a (repo, branch) pair."""

    def __init__(
        self,
        operation: str,
        repo: str,
        branch: str,
        detail: str,
        cause: Optional[BaseException] = None,
    ):
        self.operation = operation
        self.repo = repo
        self.branch = branch
        self.detail = detail
        self.cause = cause
        super().__init__(f"{operation} {repo} {branch}: {detail}")


class NoTemplateError(ReconcileError):
    pass


class NoInstanceError(ReconcileError):
    pass


class CreateError(ReconcileError):
    pass


class DeleteError(ReconcileError):
    pass


class IntegrateError(ReconcileError):
    pass
