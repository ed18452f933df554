"""
Exceptions raised by the gradpipe optimizers and recorders.
"""

from typing import Optional, Sequence


class ShapeMismatchError(ValueError):
    """
    A gradient or a stored state tensor does not match its parameter's shape.

    Never broadcast or truncated: the step for that parameter is abandoned.

    Attributes:
        param_id: Identity of the offending parameter, when known
        expected: Shape the parameter (or its state) has
        got: Shape that was supplied
    """

    def __init__(self, expected: Sequence[int], got: Sequence[int],
                 param_id: Optional[str] = None, what: str = "gradient"):
        self.expected = tuple(expected)
        self.got = tuple(got)
        self.param_id = param_id
        self.what = what
        location = f" for parameter '{param_id}'" if param_id is not None else ""
        super().__init__(
            f"Shape mismatch{location}: {what} has shape {self.got}, "
            f"expected {self.expected}"
        )

    def with_param_id(self, param_id: str) -> "ShapeMismatchError":
        return ShapeMismatchError(self.expected, self.got, param_id=param_id, what=self.what)


class RecordError(RuntimeError):
    """A persisted optimizer record could not be read back."""
