# feedesk/core/exceptions.py
#
# Domain errors raised at the collaborator boundary.
# The pure ledger core never raises these for validation problems;
# it returns Err(...) values instead (see schemas/results.py).


class FeeDeskError(Exception):
    """Base class for every error FeeDesk raises on purpose."""


class SnapshotUnavailableError(FeeDeskError):
    """The fee structure / concession / history snapshot could not be read."""


class StaleSnapshotError(FeeDeskError):
    """
    The payment recorder rejected a batch because outstanding amounts
    changed after the snapshot was read (another operator collected first).
    """


class PaymentRecordingError(FeeDeskError):
    """The payment recorder failed for any reason other than a stale snapshot."""


class InvalidSignatureError(FeeDeskError):
    """A gateway webhook arrived with a missing or wrong HMAC signature."""
