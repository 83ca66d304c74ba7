"""
Error taxonomy for the indexing and search layers.

Every failure reaches the immediate caller as one of these types. Encoding
failures always happen before anything is persisted, so retrying the whole
operation is safe.
"""


class PlaceFinderError(Exception):
    """Base class for all indexing and search errors."""
    pass


class InvalidInputError(PlaceFinderError, ValueError):
    """Empty text to encode, or a malformed request value."""
    pass


class InvalidArgumentError(InvalidInputError):
    """Search parameter out of range (threshold outside [-1, 1], limit <= 0)."""
    pass


class EncodingFailure(PlaceFinderError):
    """Encoder model unavailable or inference error."""
    pass


class EncoderLoadTimeout(EncodingFailure):
    """The caller stopped waiting for the encoder load. The load itself keeps going."""
    pass


class DimensionMismatchError(PlaceFinderError):
    """A vector of the wrong length reached the encoder output or the store."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Vector dimension {actual} does not match expected dimension {expected}")
        self.expected = expected
        self.actual = actual


class StaleVectorError(PlaceFinderError):
    """The vector handed to the store was not derived from the text being stored."""
    pass


class PersistenceError(PlaceFinderError):
    """Backend I/O failure. Not retried inside the core."""
    pass


class EntityNotFoundError(PlaceFinderError, LookupError):
    """No stored entity with the requested id."""

    def __init__(self, entity_id):
        super().__init__(f"Entity {entity_id} not found")
        self.entity_id = entity_id
