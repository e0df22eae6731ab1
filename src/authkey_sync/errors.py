"""Error kinds raised while reconciling configuration changes.

Every error carries a short ``kind`` tag used in results and logs.
"""


class ReconcileError(Exception):
    """Base class for failures that abort a batch or a bulk walk."""
    kind = "internal"
    validation = False


class MalformedPathError(ReconcileError):
    """Path does not match the authorized-key subtree shape."""
    kind = "malformed_path"


class UnexpectedValueError(MalformedPathError):
    """A leaf carries a value of an unexpected type or is missing one."""


class UnsupportedAlgorithmError(ReconcileError):
    """Configured key algorithm is outside the supported set."""
    kind = "unsupported_algorithm"
    validation = True

    def __init__(self, algorithm: str):
        super().__init__(f'Unsupported SSH key algorithm "{algorithm}".')
        self.algorithm = algorithm


class MissingAlgorithmError(ReconcileError):
    """Key data arrived without an algorithm for the same entry."""
    kind = "missing_algorithm"


class StoreError(ReconcileError):
    """The credential store rejected or could not perform an operation."""
    kind = "store_error"


class DatastoreError(ReconcileError):
    """The configuration datastore could not serve a lookup or walk."""
    kind = "datastore_error"


class ItemNotFoundError(DatastoreError):
    """No node exists at the requested path."""


class BootstrapError(Exception):
    """Service initialization failed (subscription or initial resync)."""


class CommitRejectedError(Exception):
    """A configuration commit was rejected by a change subscriber."""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result
