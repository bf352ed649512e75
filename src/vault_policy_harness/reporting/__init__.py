"""Result recording, rendering, persistence and regeneration."""

from vault_policy_harness.reporting.artifacts import ResultArtifactStore
from vault_policy_harness.reporting.recorder import ResultRecorder, build_result, summarize
from vault_policy_harness.reporting.renderer import render_json, render_report

__all__ = [
    "ResultArtifactStore",
    "ResultRecorder",
    "build_result",
    "render_json",
    "render_report",
    "summarize",
]
