"""Exceptions raised by priors and the persistence layer."""


class DimensionMismatchError(ValueError):
    """Input points do not have the dimension of the prior."""

    def __init__(self, expected: int, got: int):
        super().__init__(f"Expected {expected}-dimensional input, got {got}")
        self.expected = expected
        self.got = got


class RestoreError(ValueError):
    """A persisted document could not be turned back into a prior."""
