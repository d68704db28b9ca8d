"""Wizard step constants."""

from __future__ import annotations

from enum import StrEnum


class WizardStep(StrEnum):
    """Steps and terminal outcomes of the onboarding wizard."""

    STEP1 = "step1"
    STEP2 = "step2"
    SUBMITTED = "submitted"
    DISCARDED = "discarded"


TERMINAL_STEPS = {WizardStep.SUBMITTED, WizardStep.DISCARDED}


def is_terminal(step: WizardStep) -> bool:
    return step in TERMINAL_STEPS
