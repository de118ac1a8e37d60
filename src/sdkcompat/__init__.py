from .dsl import sdk, sh, wf, SdkBuilder, build
from .model import SdkJobSpec, Step, StepPhase, ToolchainKind, TriggerKind
from .resolver import resolve
from .runner import run_pipeline, run_sdk_job

__all__ = [
    "sdk",
    "sh",
    "wf",
    "SdkBuilder",
    "build",
    "SdkJobSpec",
    "Step",
    "StepPhase",
    "ToolchainKind",
    "TriggerKind",
    "resolve",
    "run_pipeline",
    "run_sdk_job",
]
