"""Error taxonomy shared by the store, the upload handler and the analysis adapter."""


class ImageShelfError(Exception):
    """Base class; ``status_code`` is what the HTTP layer answers with."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(ImageShelfError):
    """Missing file or badly shaped input."""

    status_code = 400


class NotFoundError(ImageShelfError):
    status_code = 404

    def __init__(self, image_id: str):
        super().__init__(f"Image '{image_id}' not found.")
        self.image_id = image_id


class StorageError(ImageShelfError):
    """Disk or serialization failure. Not retried."""

    status_code = 500


class ProviderError(ImageShelfError):
    """A remote analysis provider failed. Absorbed by the fallback chain, never sent to clients."""

    status_code = 502
