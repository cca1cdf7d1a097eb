"""Convergence planning.

The planner maps a detected :class:`~vlinkctl.models.PriorState` and the
operator's force flags onto one :class:`~vlinkctl.models.ConvergenceAction`:

=====================  ==================  ======================  ======================
Prior state            no force flags      ``--overwrite-binary``  ``--overwrite-config``
=====================  ==================  ======================  ======================
absent                 fresh install       fresh install           fresh install
anything present       ask (or preserve)   preserve config         replace config
=====================  ==================  ======================  ======================

Without force flags a non-interactive run preserves the existing config and
refreshes the binary or image; destroying a config always needs an explicit
opt-in. Abort can only be chosen at an interactive prompt.
"""
from __future__ import annotations

from .models import ConvergenceAction, PriorState, PriorStateKind
from .prompts import PromptSource

UPGRADE_CHOICES: tuple[tuple[str, ConvergenceAction], ...] = (
    (
        "Keep the existing configuration, update the program",
        ConvergenceAction.UPGRADE_PRESERVE_CONFIG,
    ),
    (
        "Replace the configuration (current file is backed up)",
        ConvergenceAction.UPGRADE_REPLACE_CONFIG,
    ),
    ("Abort", ConvergenceAction.ABORT),
)

_PRIOR_DESCRIPTIONS = {
    PriorStateKind.BINARY_ONLY: "the program is installed but no config file was found",
    PriorStateKind.CONFIG_ONLY: "a config file exists but the program is missing",
    PriorStateKind.BOTH: "the program and its config file are already installed",
    PriorStateKind.MANIFEST_PRESENT: "a compose deployment already exists",
}


def describe_prior_state(prior: PriorState) -> str:
    """Return a short human description of *prior*."""
    description = _PRIOR_DESCRIPTIONS.get(prior.kind, "nothing is installed")
    if prior.installed_version:
        description = f"{description} (version {prior.installed_version})"
    return description


def plan(
    prior: PriorState,
    *,
    overwrite_binary: bool = False,
    overwrite_config: bool = False,
    prompts: PromptSource,
) -> ConvergenceAction:
    """Choose the convergence action for *prior*."""
    if not prior.present:
        return ConvergenceAction.FRESH_INSTALL
    if overwrite_config:
        return ConvergenceAction.UPGRADE_REPLACE_CONFIG
    if overwrite_binary:
        return ConvergenceAction.UPGRADE_PRESERVE_CONFIG
    index = prompts.choose(
        f"Existing installation of {prior.target} detected: {describe_prior_state(prior)}.",
        [label for label, _ in UPGRADE_CHOICES],
        default=0,
    )
    return UPGRADE_CHOICES[index][1]


__all__ = ["UPGRADE_CHOICES", "describe_prior_state", "plan"]
