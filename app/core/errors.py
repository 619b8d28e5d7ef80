from __future__ import annotations


class EngineError(RuntimeError):
    """Base for failures that abort a whole engine invocation."""

    retryable: bool = False


class MarketDataUnavailable(EngineError):
    """Snapshot could not be loaded or parsed. The next invocation retries."""

    retryable = True


class LedgerUnavailable(EngineError):
    """The trade ledger could not be read or written."""
