from .analysis import AnalysisResult, CodeAnalyzer, LintError, LintWarning, analyze
from .execution.local_engine import LocalEngine
from .execution.types import (
    ExecutionOptions,
    ExecutionResult,
    StreamEvent,
    StreamEventKind,
    UnsafeExecutionContext,
)
from .policy import PRESETS, RunnerPolicy, UnsafePolicyWarning
from .runner import (
    check_interpreter_availability,
    create_engine,
    create_preset_engine,
    create_safe_engine,
    create_unsafe_context,
    create_unsafe_engine,
    run_code,
    system_info,
)
from .snippets import TEST_SNIPPETS

__version__ = "1.0.0"

SECURITY_WARNING = """\
This package contains deliberate vulnerabilities for educational purposes.
DO NOT USE IN PRODUCTION ENVIRONMENTS.
Intentionally weak areas:
- advisory-only, bypassable risk-pattern analysis
- no process isolation of guest code
- unvalidated runtime policy updates
- environment variable pass-through to guest processes
- unbounded execution time and output in permissive presets
"""

__all__ = [
    "AnalysisResult",
    "CodeAnalyzer",
    "ExecutionOptions",
    "ExecutionResult",
    "LintError",
    "LintWarning",
    "LocalEngine",
    "PRESETS",
    "RunnerPolicy",
    "SECURITY_WARNING",
    "StreamEvent",
    "StreamEventKind",
    "TEST_SNIPPETS",
    "UnsafeExecutionContext",
    "UnsafePolicyWarning",
    "analyze",
    "check_interpreter_availability",
    "create_engine",
    "create_preset_engine",
    "create_safe_engine",
    "create_unsafe_context",
    "create_unsafe_engine",
    "run_code",
    "system_info",
]
