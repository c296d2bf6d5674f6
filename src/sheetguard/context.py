"""Request-scoped state shared by the pipeline stages of one validation run."""

from __future__ import annotations

from dataclasses import dataclass, field

from sheetguard.config import ValidatorConfig
from sheetguard.errors import SheetGuardError
from sheetguard.models import ValidateRequest


class CancellationToken:
    """Cooperative cancel flag, polled at chunk and image boundaries."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


def is_cancelled(token: CancellationToken | None) -> bool:
    return token is not None and token.cancelled


@dataclass
class ValidationContext:
    """Everything a stage may read for the current run.

    The request (and its template) and the config are read-only; only
    ``warnings`` is appended to as stages degrade.
    """

    request: ValidateRequest
    config: ValidatorConfig
    token: CancellationToken = field(default_factory=CancellationToken)
    warnings: list[SheetGuardError] = field(default_factory=list)

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled
