#!/usr/bin/env python3
"""
Rule Set Configuration

Loads validation rules from a YAML file, validates them against
rule_set_schema.json and turns them into immutable RuleSet objects.

Each rule set carries required tags and attribute whitelists. A rule set
without apply_if runs on every document; one with apply_if runs only when the
named condition holds for the document (static_data is the classifier's
verdict, other names come from the conditions block).
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml
from jsonschema import Draft7Validator

from classifier import (
    STATIC_DATA_CONDITION,
    STRATEGY_TEXTUAL,
    PredicateParseError,
    StaticDataClassifier,
    parse_predicate_expression,
)
from xml_tree import normalize_tag


SCHEMA_PATH = Path(__file__).parent / "rule_set_schema.json"
DEFAULT_RULES_PATH = Path(__file__).parent / "rules.yaml"
DEFAULT_EXTENSION = ".xml"

# Loaded rules, keyed by resolved path
_rules_cache: Dict[Path, "RuleConfig"] = {}
_schema_validator: Optional[Draft7Validator] = None


class RuleConfigError(ValueError):
    """Raised when a rules file cannot be loaded or is invalid."""
    pass


@dataclass(frozen=True)
class RuleSet:
    """
    One named group of checks.

    Attributes:
        name: Rule set name, shown in findings (e.g. "global", "static")
        required_tags: Tags that should occur in the document, config order
        required_attribute_values: Attribute name to allowed values
        apply_if: Condition name gating this rule set, None to always apply
    """
    name: str
    required_tags: Tuple[str, ...] = ()
    required_attribute_values: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    apply_if: Optional[str] = None

    @property
    def is_conditional(self) -> bool:
        return self.apply_if is not None


@dataclass(frozen=True)
class RuleConfig:
    """Everything needed to validate a batch: rule sets, classifier, conditions."""
    rule_sets: Tuple[RuleSet, ...]
    classifier: StaticDataClassifier
    conditions: Dict[str, str] = field(default_factory=dict)
    extension: str = DEFAULT_EXTENSION

    def get(self, name: str) -> Optional[RuleSet]:
        for rule_set in self.rule_sets:
            if rule_set.name == name:
                return rule_set
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Render the effective rules in rules-file form."""
        rule_sets = []
        for rule_set in self.rule_sets:
            entry: Dict[str, Any] = {"name": rule_set.name}
            if rule_set.apply_if:
                entry["apply_if"] = rule_set.apply_if
            entry["required_tags"] = list(rule_set.required_tags)
            entry["required_attribute_values"] = {
                name: list(values)
                for name, values in rule_set.required_attribute_values.items()
            }
            rule_sets.append(entry)

        result: Dict[str, Any] = {
            "schema_version": 1,
            "extension": self.extension,
            "classifier": {
                "strategy": self.classifier.strategy,
                "markers": list(self.classifier.markers),
                "ignore_case": self.classifier.ignore_case,
                "static_tags": list(self.classifier.static_tags),
            },
        }
        if self.conditions:
            result["conditions"] = dict(self.conditions)
        result["rule_sets"] = rule_sets
        return result


def _get_schema_validator() -> Draft7Validator:
    global _schema_validator
    if _schema_validator is None:
        try:
            with open(SCHEMA_PATH, encoding="utf-8") as f:
                _schema_validator = Draft7Validator(json.load(f))
        except (OSError, json.JSONDecodeError) as e:
            raise RuleConfigError(f"Cannot load rules schema {SCHEMA_PATH}: {e}") from e
    return _schema_validator


def validate_rules_document(data: Any) -> List[str]:
    """
    Validate a raw rules document against the JSON schema.

    Args:
        data: Parsed YAML content

    Returns:
        List of error messages (empty if the document is valid)
    """
    validator = _get_schema_validator()
    errors = []
    ordered = sorted(validator.iter_errors(data),
                     key=lambda e: [str(part) for part in e.absolute_path])
    for error in ordered:
        location = "/".join(str(part) for part in error.absolute_path) or "<root>"
        errors.append(f"{location}: {error.message}")
    return errors


def _unique(values: Iterable[Any]) -> Tuple[str, ...]:
    seen = []
    for value in values:
        value = str(value)
        if value not in seen:
            seen.append(value)
    return tuple(seen)


def parse_rules(data: Any, strategy: Optional[str] = None,
                extension: Optional[str] = None) -> RuleConfig:
    """
    Build a RuleConfig from a parsed rules document.

    Args:
        data: Parsed YAML content
        strategy: Optional classifier strategy override
        extension: Optional document extension override

    Returns:
        RuleConfig ready for a batch run

    Raises:
        RuleConfigError: If the document violates the schema, declares an
            invalid predicate, or gates a rule set on an unknown condition
    """
    errors = validate_rules_document(data)
    if errors:
        raise RuleConfigError("Invalid rules document:\n  " + "\n  ".join(errors))

    conditions = dict(data.get("conditions", {}))
    if STATIC_DATA_CONDITION in conditions:
        raise RuleConfigError(
            f"Condition name '{STATIC_DATA_CONDITION}' is reserved for the classifier"
        )
    for name, expression in conditions.items():
        try:
            parse_predicate_expression(expression)
        except PredicateParseError as e:
            raise RuleConfigError(f"Invalid condition '{name}': {e}") from e

    known_conditions = {STATIC_DATA_CONDITION, *conditions}
    rule_sets = []
    names = set()
    for entry in data["rule_sets"]:
        name = entry["name"]
        if name in names:
            raise RuleConfigError(f"Duplicate rule set name: {name}")
        names.add(name)

        apply_if = entry.get("apply_if")
        if apply_if is not None and apply_if not in known_conditions:
            raise RuleConfigError(
                f"Rule set '{name}' depends on unknown condition '{apply_if}'"
            )

        rule_sets.append(RuleSet(
            name=name,
            required_tags=_unique(
                normalize_tag(tag) for tag in entry.get("required_tags", [])
            ),
            required_attribute_values={
                normalize_tag(attribute): _unique(values)
                for attribute, values in entry.get("required_attribute_values", {}).items()
            },
            apply_if=apply_if,
        ))

    classifier_data = data.get("classifier", {})
    static_tags = classifier_data.get("static_tags")
    if static_tags is None:
        # Structural detection defaults to the tags of the static rule sets
        static_tags = [
            tag
            for rule_set in rule_sets if rule_set.apply_if == STATIC_DATA_CONDITION
            for tag in rule_set.required_tags
        ]

    try:
        classifier = StaticDataClassifier(
            strategy=strategy or classifier_data.get("strategy", STRATEGY_TEXTUAL),
            markers=classifier_data.get("markers", []),
            static_tags=_unique(normalize_tag(tag) for tag in static_tags),
            ignore_case=classifier_data.get("ignore_case", False),
        )
    except ValueError as e:
        raise RuleConfigError(str(e)) from e

    return RuleConfig(
        rule_sets=tuple(rule_sets),
        classifier=classifier,
        conditions=conditions,
        extension=extension or data.get("extension", DEFAULT_EXTENSION),
    )


def load_rules(path: Optional[Path] = None, strategy: Optional[str] = None,
               extension: Optional[str] = None, use_cache: bool = True) -> RuleConfig:
    """
    Load rules from a YAML file with caching.

    Overrides bypass the cache, since they change the resulting config.

    Args:
        path: Rules file, defaults to rules.yaml beside this module
        strategy: Optional classifier strategy override
        extension: Optional document extension override
        use_cache: Whether to use cached rules (default: True)

    Returns:
        RuleConfig for the file

    Raises:
        RuleConfigError: If the file is missing, is not valid YAML, or
            contains invalid rules
    """
    path = Path(path) if path is not None else DEFAULT_RULES_PATH
    key = path.resolve()
    cacheable = use_cache and strategy is None and extension is None

    if cacheable and key in _rules_cache:
        return _rules_cache[key]

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise RuleConfigError(f"Cannot read rules file {path}: {e}") from e

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise RuleConfigError(f"Failed to parse YAML in {path}: {e}") from e

    config = parse_rules(data, strategy=strategy, extension=extension)

    if cacheable:
        _rules_cache[key] = config

    return config


def clear_cache() -> None:
    """Clear the loaded rules cache."""
    _rules_cache.clear()
