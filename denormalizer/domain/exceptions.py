"""Exceptions raised by the denormalizer worker."""


class DenormalizerError(Exception):
    """Base class for all worker errors."""

    pass


class ConfigurationError(DenormalizerError):
    """Raised when the worker is misconfigured.

    Configuration errors are detected before any subscription is opened and
    are fatal: the process exits without retrying.
    """

    pass


class SourceUnavailableError(DenormalizerError):
    """Raised when a change subscription loses its connection.

    This is a transient failure. The stream runner reacts by reconnecting
    from the last position it handled instead of terminating.
    """

    pass


class ResumePositionError(DenormalizerError):
    """Raised when a resume position cannot be loaded or persisted."""

    pass


class StreamStartupError(DenormalizerError):
    """Raised when a stream runner fails to start or attach.

    Attributes:
        stream_id: Identifier of the stream that failed.
    """

    def __init__(self, stream_id: str, message: str):
        super().__init__(f"Stream {stream_id!r} failed to start: {message}")
        self.stream_id = stream_id


class MissingDocumentImageError(DenormalizerError):
    """Raised when a change event lacks a document image its handler needs.

    This happens when pre/post image capture was not enabled on the watched
    collection at the time of the change, or the image has expired.
    """

    pass
