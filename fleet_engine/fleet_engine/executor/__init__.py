"""Build admission, tool execution and the preprocessing pipeline."""

from __future__ import annotations

from fleet_engine.executor.pipeline import PipelineRunner, discard_artifacts, resolve_input_pbf
from fleet_engine.executor.retry import RetryConfig, async_retry_with_backoff
from fleet_engine.executor.sequential import SequentialBuildExecutor
from fleet_engine.executor.subprocess_runner import ToolResult, run_tool
from fleet_engine.executor.toolchain import Toolchain, required_artifacts

__all__ = [
    "PipelineRunner",
    "RetryConfig",
    "SequentialBuildExecutor",
    "ToolResult",
    "Toolchain",
    "async_retry_with_backoff",
    "discard_artifacts",
    "required_artifacts",
    "resolve_input_pbf",
    "run_tool",
]
