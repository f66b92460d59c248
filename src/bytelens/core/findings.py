"""Non-fatal problems recorded while parsing."""

from __future__ import annotations

from dataclasses import dataclass

OUT_OF_BOUNDS = "out_of_bounds"
VALIDATION_MISMATCH = "validation_mismatch"
UNRESOLVED_EXPRESSION = "unresolved_expression"
UNKNOWN_TYPE = "unknown_type"
UNKNOWN_SWITCH = "unknown_switch"
REPEAT_ABORTED = "repeat_aborted"
RECURSION_LIMIT = "recursion_limit"
PARSE_ERROR = "parse_error"

FINDING_KINDS = (
    OUT_OF_BOUNDS,
    VALIDATION_MISMATCH,
    UNRESOLVED_EXPRESSION,
    UNKNOWN_TYPE,
    UNKNOWN_SWITCH,
    REPEAT_ABORTED,
    RECURSION_LIMIT,
    PARSE_ERROR,
)


@dataclass(frozen=True)
class Finding:
    kind: str
    message: str
    path: str = ""
    offset: int | None = None

    def __str__(self) -> str:
        where = f" @ {self.offset:#x}" if self.offset is not None else ""
        return f"[{self.kind}] {self.path}{where}: {self.message}"
