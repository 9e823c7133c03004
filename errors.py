class ValidationError(ValueError):
    """Malformed input reached the store."""


class NotFoundError(ValueError):
    """The id does not exist for the given owner."""


class ConflictError(ValueError):
    """A uniqueness rule for the owner would be violated."""
