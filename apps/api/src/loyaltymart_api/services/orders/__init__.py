"""Order validation and lifecycle rules."""

from .luhn import validate_luhn  # noqa: F401
from .state_machine import (  # noqa: F401
    TERMINAL_STATUSES,
    allowed_predecessors,
    can_transition,
    is_terminal,
)
