"""Domain exceptions raised by the onboarding wizard."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from onboarding.wizard.validation import FieldErrors


class WizardError(Exception):
    pass


class GraphError(WizardError, ValueError):
    """Rejected mutation of the entity graph (unknown field, id or index)."""


class WizardClosedError(WizardError):
    """Event received after the wizard reached a terminal state."""


class AssemblyError(WizardError):
    """Graph cannot be turned into a submission payload."""

    def __init__(self, errors: "FieldErrors") -> None:
        self.errors = errors
        messages = [issue["message"] for issue in errors.as_issues()]
        super().__init__("; ".join(messages) or "Submission payload is invalid")
