"""
Exceptions raised by the GRD settlement engine.

Missing reference data is never an error here; it degrades to zero or to an
absent value. These are reserved for input the engine cannot work with.
"""


class SettlementError(ValueError):
    """Base class for settlement errors."""


class InvalidNumericInputError(SettlementError):
    """A number that is structurally required is NaN or infinite."""

    def __init__(self, field: str, value):
        self.field = field
        self.value = value
        super().__init__(f"{field} must be a finite number, got {value!r}")


class OverrideNotAllowedError(SettlementError):
    """A manual override was written to an episode within the normal group."""

    def __init__(self, episode_id: str, fields):
        self.episode_id = episode_id
        self.fields = sorted(fields)
        super().__init__(
            f"Episode {episode_id} is within the normal group; "
            f"manual override not allowed for: {', '.join(self.fields)}"
        )


class UnknownTechnologyAdjustmentError(SettlementError):
    """Technology adjustment detail not present in the catalog."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(
            f"Technology adjustment '{detail}' does not exist in the technology adjustment catalog"
        )


class EpisodeNotFoundError(KeyError):
    """No episode with the given identifier."""

    def __init__(self, episode_id: str):
        self.episode_id = episode_id
        super().__init__(f"Episode {episode_id} was not found")


class ConcurrentUpdateError(SettlementError):
    """The stored episode version differs from the one the caller read."""

    def __init__(self, episode_id: str, expected: int, actual: int):
        self.episode_id = episode_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Episode {episode_id} was modified concurrently "
            f"(expected version {expected}, found {actual})"
        )
