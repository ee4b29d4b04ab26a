"""
Flow Module - Conversational flow execution

- FlowGraph: indexed, validated node/edge graph
- FlowExecutor: per-contact state machine over the graph
- FlowEngine: inbound message / delay resume entry point
- FlowValidator: structural validation and lint for the flow editor
"""

from .errors import (
    FlowEngineError,
    GraphValidationError,
    StateNotFoundError,
    ExternalCallError,
    MessageDeliveryError,
    CycleDetectedError
)
from .interpolator import InterpolationMiss, interpolate, interpolate_data, resolve_path
from .evaluator import ConditionEvaluator
from .graph import FlowGraph, SUCCESS_HANDLE, ERROR_HANDLE
from .trigger import TriggerMatcher, TriggerSpec, trigger_spec_for, matches_trigger
from .context import StepContext
from .result import (
    StepResult,
    StepStatus,
    NodeOutcome,
    success_outcome,
    branch_outcome,
    failure_outcome,
    end_outcome,
    ignored_result,
    error_result
)
from .executor import FlowExecutor
from .engine import FlowEngine, ContactLockRegistry
from .validator import FlowValidator, FlowValidationError, ValidationReport, validate_flow

__all__ = [
    # Errors
    "FlowEngineError",
    "GraphValidationError",
    "StateNotFoundError",
    "ExternalCallError",
    "MessageDeliveryError",
    "CycleDetectedError",

    # Pure helpers
    "InterpolationMiss",
    "interpolate",
    "interpolate_data",
    "resolve_path",
    "ConditionEvaluator",
    "TriggerMatcher",
    "TriggerSpec",
    "trigger_spec_for",
    "matches_trigger",

    # Graph
    "FlowGraph",
    "SUCCESS_HANDLE",
    "ERROR_HANDLE",

    # Execution
    "StepContext",
    "StepResult",
    "StepStatus",
    "NodeOutcome",
    "success_outcome",
    "branch_outcome",
    "failure_outcome",
    "end_outcome",
    "ignored_result",
    "error_result",
    "FlowExecutor",
    "FlowEngine",
    "ContactLockRegistry",

    # Validation
    "FlowValidator",
    "FlowValidationError",
    "ValidationReport",
    "validate_flow",
]
