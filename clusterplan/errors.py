from __future__ import annotations

from typing import Iterable, List, Optional, Sequence


class ResolutionError(Exception):
    """
    Base class for every error raised while resolving a configuration.

    All of these are raised before a plan is handed to the apply engine, so a
    resolution failure never leaves the cloud side partially mutated.
    """


class ParseError(ResolutionError):
    """
    A declaration document is malformed, or two declarations collide.
    """

    def __init__(self, message: str, source: Optional[str] = None) -> None:
        self.message = message
        self.source = source
        super().__init__(f"{source}: {message}" if source else message)


class MissingRequiredInputError(ResolutionError):
    """
    One or more variables without a default received no value.
    """

    def __init__(self, names: Iterable[str]) -> None:
        self.names: List[str] = sorted(names)
        super().__init__(
            "No value for required variable(s): " + ", ".join(self.names)
        )

    @property
    def name(self) -> str:
        return self.names[0]


class ValidationError(ResolutionError):
    """
    Bound values violate their declared type or validation rules.

    All violations are collected so they can be fixed in one pass.
    """

    def __init__(self, violations: Sequence[str]) -> None:
        self.violations = list(violations)
        lines = "\n".join(f"  - {v}" for v in self.violations)
        super().__init__(f"{len(self.violations)} validation error(s):\n{lines}")


class UnresolvedReferenceError(ResolutionError):
    """
    A reference names a variable, declaration, module or output that does not exist.
    """

    def __init__(self, reference: str, location: str, reason: str = "") -> None:
        self.reference = reference
        self.location = location
        message = f"Reference to undeclared '{reference}' in {location}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class CyclicDependencyError(ResolutionError):
    """
    The declarations depend on each other in a cycle.
    """

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = list(cycle)
        super().__init__("Dependency cycle: " + " -> ".join(self.cycle))


class StateError(ResolutionError):
    """
    The recorded state snapshot cannot be read.
    """
