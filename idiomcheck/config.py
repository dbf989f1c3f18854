"""
Engine configuration contract.

Configuration arrives as an already-loaded mapping (file formats and
argument parsing live outside the checker).  ``load_config`` validates it
into an immutable ``EngineConfig``; every problem surfaces as a
``ConfigurationError`` before any file is analysed.

Example::

    load_config({
        "rules": {
            "MagicNumber": {"severity": "info"},
            "UnusedVariable": {"enabled": False},
        },
        "options": {"magic_number_allow_list": ["0", "1", "2"]},
        "max_workers": 4,
    }, registry)
"""

import logging
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from idiomcheck.diagnostics import Severity
from idiomcheck.errors import ConfigurationError

logger = logging.getLogger(__name__)


class RuleSetting(BaseModel):
    """Per-rule override: enable/disable and severity."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool = True
    severity: Optional[Severity] = None

    @field_validator("severity", mode="before")
    @classmethod
    def _lowercase_severity(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _no_severity_when_disabled(self) -> "RuleSetting":
        if not self.enabled and self.severity is not None:
            raise ValueError("rule is disabled but also given a severity")
        return self


class AnalysisOptions(BaseModel):
    """Tuning knobs of individual checks."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    magic_number_allow_list: Tuple[str, ...] = ("0", "1", "-1", "0.0", "1.0", '""')
    magic_number_ignore_loop_bounds: bool = True
    magic_number_include_strings: bool = True
    duplicate_max_differences: int = Field(default=2, ge=0)
    duplicate_max_depth: int = Field(default=12, ge=1)


class EngineConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    rules: Dict[str, RuleSetting] = Field(default_factory=dict)
    options: AnalysisOptions = Field(default_factory=AnalysisOptions)
    max_workers: Optional[int] = Field(default=None, ge=1)
    parallel_checks: bool = False
    tolerate_syntax_errors: bool = False

    @field_validator("rules")
    @classmethod
    def _no_case_duplicates(cls, rules: Dict[str, RuleSetting]) -> Dict[str, RuleSetting]:
        seen: Dict[str, str] = {}
        for rule_id in rules:
            folded = rule_id.lower()
            if folded in seen:
                raise ValueError(f"rule '{rule_id}' configured twice (also as '{seen[folded]}')")
            seen[folded] = rule_id
        return rules

    def validate_against(self, registry) -> None:
        """Reject rule ids the registry does not know."""
        known = set(registry.rule_ids())
        unknown = sorted(rule_id for rule_id in self.rules if rule_id not in known)
        if unknown:
            raise ConfigurationError(f"Unknown rule id(s) in configuration: {', '.join(unknown)}")

    def is_enabled(self, rule_id: str) -> bool:
        setting = self.rules.get(rule_id)
        return setting.enabled if setting is not None else True

    def effective_severity(self, rule_id: str, default: Severity) -> Severity:
        setting = self.rules.get(rule_id)
        if setting is not None and setting.severity is not None:
            return setting.severity
        return default


def load_config(data: Union[None, Mapping[str, Any], EngineConfig] = None, registry=None) -> EngineConfig:
    """Validate a configuration mapping; raises ``ConfigurationError``."""
    if data is None:
        config = EngineConfig()
    elif isinstance(data, EngineConfig):
        config = data
    elif isinstance(data, Mapping):
        try:
            config = EngineConfig.model_validate(dict(data))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
    else:
        raise ConfigurationError(f"Configuration must be a mapping, got {type(data).__name__}")

    if registry is not None:
        config.validate_against(registry)
    logger.debug("Configuration loaded: %d rule override(s), max_workers=%s",
                 len(config.rules), config.max_workers)
    return config
