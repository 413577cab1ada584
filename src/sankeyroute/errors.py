"""Exceptions raised by sankeyroute."""


class RoutingError(ValueError):
    """Base class for unrecoverable routing errors."""

    pass


class UnknownAlgorithmError(RoutingError):
    """Raised when a routing algorithm name is not one of the known strategies."""

    def __init__(self, name: str, known=()):
        self.name = name
        self.known = tuple(known)
        message = f"Unknown routing algorithm: {name!r}"
        if self.known:
            message += f" (expected one of: {', '.join(self.known)})"
        super().__init__(message)
