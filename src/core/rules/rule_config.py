"""
Rule configuration parsing.

Parses the ``rules:`` section of pipeline YAML files and provides a builder
for rules assembled in code (schema rules derived from field specs, tests).
"""

from typing import Any

SEVERITIES = ("error", "warning")


def parse_rule_section(field_rules: dict[str, Any]) -> list[dict[str, Any]]:
    """
    Parse a ``rules:`` mapping into rule dictionaries for RuleEngine.

    Expected YAML format:
    ```yaml
    rules:
      equipamento:
        - type: allowed_values
          params:
            values: [BAHMAN, SILOKING]
            code: EQUIPMENT_NOT_ALLOWED

      kg_planejado:
        - type: range
          params:
            min_exclusive: 0
            max: 50000
    ```

    Args:
        field_rules: Field name -> list of rule definitions

    Returns:
        List of rule dictionaries

    Raises:
        ValueError: If a definition is malformed
    """
    if not isinstance(field_rules, dict):
        raise ValueError("'rules' section must be a mapping of field name to rule list")

    rules = []
    for field_name, field_rule_list in field_rules.items():
        if not isinstance(field_rule_list, list):
            raise ValueError(f"Rules for field '{field_name}' must be a list")

        for idx, rule_def in enumerate(field_rule_list):
            rules.append(_parse_rule(field_name, rule_def, idx))

    return rules


def _parse_rule(field_name: str, rule_def: dict[str, Any], idx: int) -> dict[str, Any]:
    """
    Parse a single rule definition.

    Args:
        field_name: The field this rule applies to
        rule_def: The rule definition from YAML
        idx: Index of this rule for the field (for naming)

    Returns:
        Parsed rule dictionary

    Raises:
        ValueError: If rule definition is invalid
    """
    if not isinstance(rule_def, dict) or "type" not in rule_def:
        raise ValueError(f"Rule for field '{field_name}' is missing 'type'")

    rule_type = rule_def["type"]
    rule_name = rule_def.get("name", f"{field_name}_{rule_type}_{idx}")
    parameters = rule_def.get("params", rule_def.get("parameters", {})) or {}

    severity = rule_def.get("severity", "error")
    if severity not in SEVERITIES:
        raise ValueError(f"Invalid severity '{severity}' for rule '{rule_name}'. Must be 'error' or 'warning'")

    return {
        "rule_name": rule_name,
        "rule_type": rule_type,
        "field_name": field_name,
        "parameters": parameters,
        "severity": severity,
        "enabled": rule_def.get("enabled", True),
    }


class RuleConfigBuilder:
    """
    Programmatically build rule configurations.
    """

    def __init__(self):
        """Initialize empty rule configuration."""
        self.rules: list[dict[str, Any]] = []

    def _add(self, rule_name: str, rule_type: str, field_name: str, parameters: dict[str, Any],
             severity: str = "error") -> "RuleConfigBuilder":
        self.rules.append({
            "rule_name": rule_name,
            "rule_type": rule_type,
            "field_name": field_name,
            "parameters": parameters,
            "severity": severity,
            "enabled": True,
        })
        return self

    def add_required_field(self, field_name: str, allow_empty_string: bool = False) -> "RuleConfigBuilder":
        """Add a required field rule."""
        return self._add(f"{field_name}_required", "required_field", field_name,
                         {"allow_empty_string": allow_empty_string})

    def add_type_check(self, field_name: str, expected_type: str) -> "RuleConfigBuilder":
        """Add a type check rule."""
        return self._add(f"{field_name}_type_check", "type_check", field_name,
                         {"expected_type": expected_type})

    def add_range(
        self,
        field_name: str,
        min_value: float | None = None,
        max_value: float | None = None,
        severity: str = "error",
    ) -> "RuleConfigBuilder":
        """Add a range validation rule."""
        params = {}
        if min_value is not None:
            params["min"] = min_value
        if max_value is not None:
            params["max"] = max_value
        return self._add(f"{field_name}_range", "range", field_name, params, severity)

    def add_regex(self, field_name: str, pattern: str) -> "RuleConfigBuilder":
        """Add a regex validation rule."""
        return self._add(f"{field_name}_regex", "regex", field_name, {"pattern": pattern})

    def add_allowed_values(self, field_name: str, values: list[str], code: str | None = None) -> "RuleConfigBuilder":
        """Add a whitelist rule."""
        params: dict[str, Any] = {"values": values}
        if code:
            params["code"] = code
        return self._add(f"{field_name}_allowed_values", "allowed_values", field_name, params)

    def build(self) -> list[dict[str, Any]]:
        """Build and return the rule configuration."""
        return self.rules
