from __future__ import annotations

import dataclasses
import logging
import os
import sys
import tomllib
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

logger = logging.getLogger(__name__)

PRESET_NAMES = ("safe", "testing", "educational", "dangerous")


class UnsafePolicyWarning(UserWarning):
    """Warning emitted when an engine is built with safety measures disabled."""


def _default_policy_path() -> Path:
    """Return bundled default policy TOML path.

    Example:
        ```python
        path = _default_policy_path()
        ```
    """
    return Path(__file__).with_name("default_policy.toml")


def _read_policy_toml(path: Path) -> dict[str, Any]:
    """Read policy TOML and return the raw policy table.

    Example:
        ```python
        raw = _read_policy_toml(Path("/tmp/policy.toml"))
        ```
    """
    if not path.exists():
        return {
            "timeout_seconds": 30,
            "max_output_lines": 1000,
            "analysis_enabled": True,
            "allow_unsafe": False,
        }
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    policy_obj = raw.get("policy", raw)
    if not isinstance(policy_obj, dict):
        raise ValueError("Policy config must be a TOML table")
    return policy_obj


def _as_bool(value: Any, field_name: str) -> bool:
    """Validate a boolean policy field.

    Example:
        ```python
        enabled = _as_bool(True, "analysis_enabled")
        ```
    """
    if not isinstance(value, bool):
        raise ValueError(f"'{field_name}' must be a boolean")
    return value


def _as_seconds(value: Any, field_name: str) -> float:
    """Validate a non-negative number of seconds.

    Example:
        ```python
        timeout = _as_seconds(10, "timeout_seconds")
        ```
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{field_name}' must be a number of seconds")
    if value < 0:
        raise ValueError(f"'{field_name}' must not be negative")
    return float(value)


def _as_line_limit(value: Any, field_name: str) -> int:
    """Validate a positive output line limit.

    Example:
        ```python
        limit = _as_line_limit(100, "max_output_lines")
        ```
    """
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"'{field_name}' must be a positive integer")
    return value


def _str_map(value: Any, field_name: str) -> dict[str, str]:
    """Validate and normalize a string-to-string table.

    Example:
        ```python
        env = _str_map({"LANG": "C"}, "environment")
        ```
    """
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"'{field_name}' must be a table of strings")
    out: dict[str, str] = {}
    for key, item in value.items():
        if not isinstance(item, str):
            raise ValueError(f"'{field_name}' must contain only strings")
        out[str(key)] = item
    return out


_DEFAULT_POLICY_RAW = _read_policy_toml(_default_policy_path())
DEFAULT_INTERPRETER = str(_DEFAULT_POLICY_RAW.get("interpreter_path") or sys.executable)
DEFAULT_TIMEOUT_SECONDS = _as_seconds(
    _DEFAULT_POLICY_RAW.get("timeout_seconds", 30), "timeout_seconds"
)
DEFAULT_MAX_OUTPUT_LINES = _as_line_limit(
    _DEFAULT_POLICY_RAW.get("max_output_lines", 1000), "max_output_lines"
)
DEFAULT_ANALYSIS_ENABLED = _as_bool(
    _DEFAULT_POLICY_RAW.get("analysis_enabled", True), "analysis_enabled"
)
DEFAULT_ALLOW_UNSAFE = _as_bool(_DEFAULT_POLICY_RAW.get("allow_unsafe", False), "allow_unsafe")


@dataclass(frozen=True, slots=True)
class RunnerPolicy:
    """Immutable policy snapshot controlling one engine's executions.

    `timeout_seconds == 0` arms no timer. `max_output_lines=None` lifts the
    streaming line limit.

    Example:
        ```python
        policy = RunnerPolicy(timeout_seconds=5, max_output_lines=200)
        ```
    """

    interpreter_path: str = DEFAULT_INTERPRETER
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_output_lines: int | None = DEFAULT_MAX_OUTPUT_LINES
    analysis_enabled: bool = DEFAULT_ANALYSIS_ENABLED
    allow_unsafe: bool = DEFAULT_ALLOW_UNSAFE
    working_directory: str = field(default_factory=os.getcwd)
    environment: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))
    config_path: str | None = None

    @classmethod
    def from_file(cls, config_path: str) -> "RunnerPolicy":
        """Create a policy instance from a TOML file.

        Example:
            ```python
            policy = RunnerPolicy.from_file("/tmp/policy.toml")
            ```
        """
        raw = _read_policy_toml(Path(config_path))
        base_env = dict(os.environ)
        base_env.update(_str_map(raw.get("environment"), "environment"))
        return cls(
            interpreter_path=str(raw.get("interpreter_path") or DEFAULT_INTERPRETER),
            timeout_seconds=_as_seconds(
                raw.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS), "timeout_seconds"
            ),
            max_output_lines=_as_line_limit(
                raw.get("max_output_lines", DEFAULT_MAX_OUTPUT_LINES), "max_output_lines"
            ),
            analysis_enabled=_as_bool(
                raw.get("analysis_enabled", DEFAULT_ANALYSIS_ENABLED), "analysis_enabled"
            ),
            allow_unsafe=_as_bool(raw.get("allow_unsafe", DEFAULT_ALLOW_UNSAFE), "allow_unsafe"),
            working_directory=str(raw.get("working_directory") or os.getcwd()),
            environment=base_env,
            config_path=config_path,
        )

    def effective_timeout(self, override: float | None = None) -> float:
        """Return the per-call timeout if given, else the policy timeout.

        Example:
            ```python
            RunnerPolicy(timeout_seconds=10).effective_timeout(2)  # 2
            ```
        """
        return self.timeout_seconds if override is None else override

    def streams_line(self, line_count: int) -> bool:
        """Decide whether stdout may still be streamed after `line_count` lines.

        Example:
            ```python
            RunnerPolicy(max_output_lines=3).streams_line(2)  # True
            ```
        """
        if self.allow_unsafe or self.max_output_lines is None:
            return True
        return line_count < self.max_output_lines


PRESETS: dict[str, dict[str, Any]] = {
    "safe": {
        "timeout_seconds": 10.0,
        "max_output_lines": 100,
        "analysis_enabled": True,
        "allow_unsafe": False,
    },
    "testing": {
        "timeout_seconds": 60.0,
        "max_output_lines": 5000,
        "analysis_enabled": True,
        "allow_unsafe": False,
    },
    "educational": {
        "timeout_seconds": 30.0,
        "max_output_lines": 1000,
        "analysis_enabled": True,
        "allow_unsafe": True,
    },
    "dangerous": {
        "timeout_seconds": 0.0,
        "max_output_lines": None,
        "analysis_enabled": False,
        "allow_unsafe": True,
    },
}

_PRESET_WARNINGS = {
    "educational": "Educational mode: some unsafe operations are enabled for learning purposes",
    "dangerous": "DANGEROUS MODE: all safety measures disabled",
}


def preset_fields(preset: str) -> dict[str, Any]:
    """Return the policy fields for a named preset, warning for permissive ones.

    Example:
        ```python
        fields = preset_fields("testing")
        ```
    """
    if preset not in PRESETS:
        raise ValueError(f"Unknown preset: {preset!r}. Expected one of {', '.join(PRESET_NAMES)}")
    message = _PRESET_WARNINGS.get(preset)
    if message is not None:
        logger.warning(message)
        warnings.warn(message, UnsafePolicyWarning, stacklevel=3)
    return dict(PRESETS[preset])


def merge_policy(policy: RunnerPolicy, **fields: Any) -> RunnerPolicy:
    """Return a new snapshot with `fields` shallow-merged over `policy`.

    No validation and no repair of dependent fields is performed.

    Example:
        ```python
        loose = merge_policy(RunnerPolicy(), allow_unsafe=True)
        ```
    """
    return dataclasses.replace(policy, **fields)


def resolve_policy(
    preset: str | None = None,
    *,
    policy_file: str | None = None,
    **overrides: Any,
) -> RunnerPolicy:
    """Merge built-in defaults, an optional preset and caller overrides.

    Example:
        ```python
        policy = resolve_policy("safe", timeout_seconds=3)
        ```
    """
    policy = RunnerPolicy.from_file(policy_file) if policy_file is not None else RunnerPolicy()
    if preset is not None:
        policy = merge_policy(policy, **preset_fields(preset))
    return merge_policy(policy, **overrides)
