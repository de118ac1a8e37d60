# resolver.py
from __future__ import annotations

from typing import Optional

from .config import DEFAULT_IMAGE_TAG
from .model import DEFAULT_IMAGE_REPOSITORY, ImageReference, ImageSource, TriggerKind


# CI event names accepted alongside our own trigger names
_TRIGGER_ALIASES = {
    "manual": TriggerKind.MANUAL,
    "workflow_dispatch": TriggerKind.MANUAL,
    "scheduled": TriggerKind.SCHEDULED,
    "schedule": TriggerKind.SCHEDULED,
}


def parse_trigger(value: TriggerKind | str) -> TriggerKind:
    """Unknown trigger names fall back to scheduled (which always uses the default image)."""
    if isinstance(value, TriggerKind):
        return value
    return _TRIGGER_ALIASES.get(str(value).strip().lower(), TriggerKind.SCHEDULED)


def resolve(
    trigger_kind: TriggerKind | str,
    override: Optional[str] = None,
    *,
    default: str = DEFAULT_IMAGE_TAG,
    repository: str = DEFAULT_IMAGE_REPOSITORY,
) -> ImageReference:
    """
    Decide which server image a pipeline run tests.

    Only a manual trigger with a non-blank override uses the override (verbatim);
    every other combination degrades to the default tag. Never raises.
    """
    if parse_trigger(trigger_kind) is TriggerKind.MANUAL and override and override.strip():
        return ImageReference(tag=override, source=ImageSource.OVERRIDE, repository=repository)
    return ImageReference(tag=default, source=ImageSource.DEFAULT, repository=repository)
