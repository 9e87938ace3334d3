"""Fatal error taxonomy for the water balance pipeline.

Only conditions that must halt a run are modelled as exceptions.  Pixel
level problems (missing observations, zero denominators) are recovered
locally by writing NaN into the affected output grids and never surface
here.
"""

from __future__ import annotations

from typing import Any, Optional


class AgriwaterError(Exception):
    """Base class for all fatal pipeline errors."""


class MissingInputBand(AgriwaterError, KeyError):
    """A mandatory input variable is absent for the whole analysis extent."""

    def __init__(self, variable: str, *, stage: str = "inputs", detail: str = ""):
        self.variable = variable
        self.stage = stage
        message = f"[{stage}] required input '{variable}' is missing"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return str(self.args[0])


class GridMisalignment(AgriwaterError, ValueError):
    """Two grids combined in one expression differ in shape, transform or CRS."""

    def __init__(self, left: str, right: str, *, operation: str = "", detail: str = ""):
        self.left = left
        self.right = right
        self.operation = operation
        where = f" in '{operation}'" if operation else ""
        message = f"Grids '{left}' and '{right}' are not aligned{where}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class InvalidParameterRange(AgriwaterError, ValueError):
    """A configured coefficient falls outside its physically valid domain."""

    def __init__(self, parameter: str, value: Any, valid: Optional[str] = None):
        self.parameter = parameter
        self.value = value
        self.valid = valid
        message = f"Parameter '{parameter}'={value!r} is out of range"
        if valid:
            message = f"{message}; expected {valid}"
        super().__init__(message)
