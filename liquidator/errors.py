"""Exception hierarchy for the liquidator."""


class LiquidatorError(Exception):
    """Base class for all liquidator errors."""


class InvalidAddressError(LiquidatorError, ValueError):
    """An account address is empty or not a valid base58 key."""


class MirrorStateError(LiquidatorError):
    """A mirror lifecycle call was made in the wrong state."""


class UnsupportedAssetError(LiquidatorError):
    """No swap venue or token translation is configured for an asset."""


class RpcError(LiquidatorError):
    """The ledger node rejected a request or could not be reached."""


class TransactionFailedError(RpcError):
    """A submitted transaction failed or was never confirmed."""
