# arbhawk/exceptions.py


class ArbHawkError(Exception):
    """Base class for every error raised by the engine."""


class ConfigError(ArbHawkError, ValueError):
    """Rejected input or configuration. Raised synchronously, never coerced."""


class SnapshotError(ArbHawkError):
    """A market snapshot could not be produced (network, timeout, exchange outage)."""


class LedgerError(ArbHawkError):
    """A ledger operation conflicts with the current state of a trade."""

    def __init__(self, trade_id: str, message: str):
        super().__init__(message)
        self.trade_id = trade_id


class UnknownTradeError(LedgerError):
    def __init__(self, trade_id: str):
        super().__init__(trade_id, f"Unknown trade id {trade_id!r}")


class TradeAlreadyResolvedError(LedgerError):
    def __init__(self, trade_id: str, status):
        super().__init__(trade_id, f"Trade {trade_id!r} is already {status.value}")
        self.status = status
