"""Exception types raised by the depmend core."""


class DepmendError(Exception):
    """Base class for depmend failures."""

    code = "DEPMEND_ERROR"


class ManifestError(DepmendError):
    """A manifest or lockfile is missing, unreadable or malformed."""

    code = "MANIFEST_ERROR"

    def __init__(self, message: str, path: str):
        super().__init__(message)
        self.path = path


class NetworkError(DepmendError):
    """A network collaborator could not complete a request."""

    code = "NETWORK_ERROR"

    def __init__(self, message: str, url: str):
        super().__init__(message)
        self.url = url


class RegistryError(DepmendError):
    """The pattern registry could not be written."""

    code = "REGISTRY_ERROR"
