"""
Rule Loader (``approval_config.loader``).

Responsibility
--------------
Loads approval rule YAML files and parses them into the frozen
``approval_kernel.domain.approval`` rule types.  Rule files are what an
administrator edits; this module is the save/load boundary where they
become immutable rule snapshots.

Architecture position
---------------------
**Config layer** -- sits above ``approval_kernel`` and
``approval_engines``.  The kernel MUST NEVER import from
``approval_config``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from the kernel domain; the
  dataclasses' own ``__post_init__`` checks run on load.
* ``load_rules`` runs ``validate_rules`` and refuses a rule set with
  errors, so an invalid rule never reaches the engine.
* ``compute_checksum`` produces a deterministic SHA-256 hash for rule set
  identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing keys, bad values, failed validation  -> ``RuleValidationError``
  listing every problem found.

Expected YAML shape::

    rules:
      - rule_id: large-travel
        name: Large travel
        priority: 10
        created_at: 2024-01-01T00:00:00+00:00
        conditions: {min_amount: 1000, categories: [travel]}
        workflow:
          type: sequential
          levels:
            - level: 1
              approvers: [{role: manager}]
              threshold: all
              time_limit: {hours: 24, escalate_to: {role: department-head}}
            - level: 2
              approvers: [{role: cfo}]
        auto_approve: {enabled: true, max_amount: 100}
        escalation: {enabled: true, after_hours: 48, escalate_to: {role: cfo}}
        delegation: {enabled: true, allow_self_delegation: false}
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from datetime import datetime, timezone
from decimal import InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from approval_kernel.domain.approval import (
    ApprovalLevel,
    ApprovalRule,
    ApprovalThreshold,
    ApproverSpec,
    AutoApprovalConditions,
    DelegationPolicy,
    EscalationPolicy,
    LevelTimeLimit,
    RuleConditions,
    WorkflowDefinition,
)
from approval_kernel.exceptions import RuleValidationError
from approval_kernel.logging_config import get_logger

logger = get_logger("config.loader")

_PARSE_ERRORS = (KeyError, ValueError, TypeError, InvalidOperation)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_datetime(value: Any) -> datetime:
    """Parse a timestamp from YAML (string or datetime).  Naive means UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value)
    else:
        raise ValueError(f"Cannot parse timestamp from {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_approver(data: dict[str, Any]) -> ApproverSpec:
    """Parse an ``ApproverSpec``; ``required`` defaults to true."""
    return ApproverSpec(
        role=data["role"],
        user_id=data.get("user_id"),
        is_required=bool(data.get("required", True)),
    )


def parse_threshold(data: Any) -> ApprovalThreshold:
    """Parse a threshold from ``"all"`` shorthand or ``{type, value}``."""
    if data is None:
        return ApprovalThreshold()
    if isinstance(data, str):
        return ApprovalThreshold(threshold_type=data)
    return ApprovalThreshold(threshold_type=data["type"], value=data.get("value"))


def parse_time_limit(data: dict[str, Any] | None) -> LevelTimeLimit | None:
    if not data:
        return None
    escalate_to = data.get("escalate_to")
    return LevelTimeLimit(
        hours=int(data["hours"]),
        escalate_to=parse_approver(escalate_to) if escalate_to else None,
    )


def parse_level(data: dict[str, Any]) -> ApprovalLevel:
    """Parse one ``ApprovalLevel``."""
    return ApprovalLevel(
        level=int(data["level"]),
        approvers=tuple(parse_approver(a) for a in data["approvers"]),
        threshold=parse_threshold(data.get("threshold")),
        condition=data.get("condition"),
        time_limit=parse_time_limit(data.get("time_limit")),
    )


def parse_workflow(data: dict[str, Any]) -> WorkflowDefinition:
    return WorkflowDefinition(
        workflow_type=data.get("type", "sequential"),
        levels=tuple(parse_level(level) for level in data["levels"]),
    )


def parse_conditions(data: dict[str, Any] | None) -> RuleConditions:
    data = data or {}
    return RuleConditions(
        min_amount=data.get("min_amount", 0),
        max_amount=data.get("max_amount"),
        categories=data.get("categories") or (),
        departments=data.get("departments") or (),
        submitter_roles=data.get("submitter_roles") or (),
        submitter_ids=data.get("submitter_ids") or (),
    )


def parse_auto_approval(data: dict[str, Any] | None) -> AutoApprovalConditions | None:
    if data is None:
        return None
    return AutoApprovalConditions(
        enabled=bool(data.get("enabled", False)),
        max_amount=data.get("max_amount"),
        categories=data.get("categories") or (),
        trusted_submitters=data.get("trusted_submitters") or (),
    )


def parse_escalation(data: dict[str, Any] | None) -> EscalationPolicy | None:
    if data is None:
        return None
    escalate_to = data.get("escalate_to")
    after_hours = data.get("after_hours")
    return EscalationPolicy(
        enabled=bool(data.get("enabled", False)),
        after_hours=int(after_hours) if after_hours is not None else None,
        escalate_to=parse_approver(escalate_to) if escalate_to else None,
    )


def parse_delegation(data: dict[str, Any] | None) -> DelegationPolicy | None:
    if data is None:
        return None
    return DelegationPolicy(
        enabled=bool(data.get("enabled", False)),
        allow_self_delegation=bool(data.get("allow_self_delegation", False)),
    )


def parse_rule(data: dict[str, Any]) -> ApprovalRule:
    """
    Parse an ``ApprovalRule`` from a dict.

    Preconditions:
        - ``data`` must contain at minimum ``rule_id``, ``name`` and
          ``workflow.levels``.
    Raises:
        RuleValidationError: naming the rule and the first problem found.
    """
    rule_id = data.get("rule_id", "<unnamed>") if isinstance(data, dict) else "<unnamed>"
    try:
        created_at = data.get("created_at")
        return ApprovalRule(
            rule_id=str(data["rule_id"]),
            name=data["name"],
            workflow=parse_workflow(data["workflow"]),
            priority=int(data.get("priority", 1)),
            is_active=bool(data.get("is_active", True)),
            created_at=parse_datetime(created_at) if created_at is not None else None,
            conditions=parse_conditions(data.get("conditions")),
            auto_approval=parse_auto_approval(data.get("auto_approve")),
            escalation=parse_escalation(data.get("escalation")),
            delegation=parse_delegation(data.get("delegation")),
            description=data.get("description", ""),
        )
    except KeyError as e:
        raise RuleValidationError([f"rule {rule_id}: missing key {e.args[0]!r}"]) from e
    except _PARSE_ERRORS as e:
        raise RuleValidationError([f"rule {rule_id}: {e}"]) from e


def parse_rules(data: dict[str, Any] | list[Any]) -> tuple[ApprovalRule, ...]:
    """Parse every rule, collecting all parse errors before raising."""
    items = data.get("rules", []) if isinstance(data, dict) else data
    rules: list[ApprovalRule] = []
    errors: list[str] = []
    for item in items or []:
        try:
            rules.append(parse_rule(item))
        except RuleValidationError as e:
            errors.extend(e.errors)
    if errors:
        raise RuleValidationError(errors)
    return tuple(rules)


def load_rules(path: Path) -> tuple[ApprovalRule, ...]:
    """
    Load, parse and validate a rule file.

    Postconditions:
        - Every returned rule passed ``validate_rules`` without errors;
          warnings are logged.
    Raises:
        RuleValidationError: if parsing or validation found errors.
    """
    from approval_config.validator import validate_rules

    rules = parse_rules(load_yaml_file(Path(path)))
    result = validate_rules(rules)
    for warning in result.warnings:
        logger.warning("rule_validation_warning", extra={"path": str(path), "detail": warning})
    if not result.is_valid:
        raise RuleValidationError(result.errors)

    logger.info(
        "rules_loaded",
        extra={
            "path": str(path),
            "rule_count": len(rules),
            "checksum": rules_checksum(rules),
        },
    )
    return rules


# =========================================================================
# Serialization and checksums
# =========================================================================


def _approver_to_dict(spec: ApproverSpec | None) -> dict[str, Any] | None:
    if spec is None:
        return None
    return {"role": spec.role.value, "user_id": spec.user_id, "required": spec.is_required}


def rule_to_dict(rule: ApprovalRule) -> dict[str, Any]:
    """Canonical dict form of a rule, in the YAML shape ``parse_rule`` reads."""
    conditions = rule.conditions
    data: dict[str, Any] = {
        "rule_id": rule.rule_id,
        "name": rule.name,
        "priority": rule.priority,
        "is_active": rule.is_active,
        "created_at": rule.created_at.isoformat() if rule.created_at else None,
        "description": rule.description,
        "conditions": {
            "min_amount": str(conditions.min_amount),
            "max_amount": str(conditions.max_amount) if conditions.max_amount is not None else None,
            "categories": sorted(conditions.categories),
            "departments": sorted(conditions.departments),
            "submitter_roles": sorted(conditions.submitter_roles),
            "submitter_ids": sorted(conditions.submitter_ids),
        },
        "workflow": {
            "type": rule.workflow.workflow_type.value,
            "levels": [
                {
                    "level": level.level,
                    "approvers": [_approver_to_dict(a) for a in level.approvers],
                    "threshold": {
                        "type": level.threshold.threshold_type.value,
                        "value": level.threshold.value,
                    },
                    "condition": level.condition,
                    "time_limit": {
                        "hours": level.time_limit.hours,
                        "escalate_to": _approver_to_dict(level.time_limit.escalate_to),
                    } if level.time_limit else None,
                }
                for level in rule.workflow.levels
            ],
        },
    }
    if rule.auto_approval is not None:
        auto = rule.auto_approval
        data["auto_approve"] = {
            "enabled": auto.enabled,
            "max_amount": str(auto.max_amount) if auto.max_amount is not None else None,
            "categories": sorted(auto.categories),
            "trusted_submitters": sorted(auto.trusted_submitters),
        }
    if rule.escalation is not None:
        data["escalation"] = {
            "enabled": rule.escalation.enabled,
            "after_hours": rule.escalation.after_hours,
            "escalate_to": _approver_to_dict(rule.escalation.escalate_to),
        }
    if rule.delegation is not None:
        data["delegation"] = {
            "enabled": rule.delegation.enabled,
            "allow_self_delegation": rule.delegation.allow_self_delegation,
        }
    return data


def compute_checksum(data: Any) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Postconditions:
        - Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def rules_checksum(rules: Iterable[ApprovalRule]) -> str:
    """Order-independent checksum of a rule set."""
    ordered = sorted(rules, key=lambda r: r.rule_id)
    return compute_checksum([rule_to_dict(r) for r in ordered])
