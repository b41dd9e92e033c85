from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Missing or invalid run parameters. Raised before any network call."""


class DiscoveryError(RuntimeError):
    """No candidate resolved to a live candy machine."""


class RpcError(RuntimeError):
    """JSON-RPC error object or an unusable result."""


class BatchUploadError(RuntimeError):
    def __init__(self, offset: int, count: int, cause: BaseException) -> None:
        super().__init__(f"config lines {offset} ~ {offset + count}: {cause}")
        self.offset = offset
        self.count = count
        self.cause = cause


class MintAttemptError(RuntimeError):
    def __init__(self, index: int, cause: BaseException) -> None:
        super().__init__(f"mint #{index}: {cause}")
        self.index = index
        self.cause = cause
