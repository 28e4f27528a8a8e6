"""
approval_config -- rule files, rule-save validation and engine settings.

Responsibility:
    Turns administrator-edited YAML into frozen approval rules, refuses
    rules that would misbehave at runtime, and supplies the engine's
    deployment settings.

Architecture position:
    Configuration -- sits above ``approval_kernel`` and
    ``approval_engines``.  The kernel MUST NEVER import from
    ``approval_config``; the service receives parsed rules and an
    ``EngineSettings`` instance from its caller.

Invariants enforced:
    - Load-time validation: ``load_rules`` returns only rule sets that
      passed ``validate_rules``.
    - Restricted conditions: level predicates pass ``guard_ast`` before
      they are ever evaluated.
    - Deterministic fingerprints: the same rules always produce the same
      ``rules_checksum``.

Failure modes:
    - ``RuleValidationError`` -- parse or validation failures.
    - ``FileNotFoundError`` -- rule or settings file missing.
"""

from pathlib import Path

from approval_config.loader import (
    compute_checksum,
    load_rules,
    load_yaml_file,
    parse_rule,
    parse_rules,
    rule_to_dict,
    rules_checksum,
)
from approval_config.settings import EngineSettings, get_settings
from approval_config.validator import RuleValidationResult, validate_rule, validate_rules

# Bundled sample rule set
DEFAULT_RULES_PATH = Path(__file__).parent / "sets" / "default_rules.yaml"

__all__ = [
    "DEFAULT_RULES_PATH",
    "EngineSettings",
    "RuleValidationResult",
    "compute_checksum",
    "get_settings",
    "load_rules",
    "load_yaml_file",
    "parse_rule",
    "parse_rules",
    "rule_to_dict",
    "rules_checksum",
    "validate_rule",
    "validate_rules",
]
