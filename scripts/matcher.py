#!/usr/bin/env python3
"""
Matcher - tag and attribute checks over adapted XML trees.

This module is the rule engine: it walks an XmlNode tree and produces
findings for each rule set that applies to the document.

Key Features:
- Tag existence search at any depth below the root
- Attribute whitelist checks on every element, root included
- One finding per (attribute, value) pair per file, first occurrence wins
- Conditional rule sets gated on the static data classifier and on named
  predicate conditions
"""

import logging
from typing import Dict, List, Optional, Set, Tuple

from classifier import (
    STATIC_DATA_CONDITION,
    PredicateContext,
    PredicateError,
    evaluate_predicate,
)
from report import FileReport, Finding, FindingKind, aggregate
from rule_set import RuleConfig, RuleSet
from xml_tree import XmlNode, iter_nodes, normalize_tag


logger = logging.getLogger(__name__)


def has_tag(node: XmlNode, tag: str) -> bool:
    """
    Check if a tag occurs anywhere below a node.

    Args:
        node: Root of the tree to search
        tag: Tag name, with or without a namespace prefix

    Returns:
        True on the first occurrence at any depth, False otherwise
    """
    tag = normalize_tag(tag)
    for descendant in iter_nodes(node, include_root=False):
        if descendant.tag == tag:
            return True
    return False


def check_tags(node: XmlNode, rule_set: RuleSet) -> List[Finding]:
    """
    Produce one finding per required tag of a rule set.

    Args:
        node: Document root
        rule_set: Rule set with required tags

    Returns:
        TAG_FOUND or TAG_MISSING finding for each required tag, in rule order
    """
    findings = []
    for tag in rule_set.required_tags:
        kind = FindingKind.TAG_FOUND if has_tag(node, tag) else FindingKind.TAG_MISSING
        findings.append(Finding(kind=kind, subject=tag, scope=rule_set.name))
    return findings


def match_attributes(node: XmlNode, rule_set: RuleSet,
                     seen: Optional[Set[str]] = None) -> Tuple[List[Finding], bool]:
    """
    Check attribute values against a rule set's whitelists.

    Every node is visited in document order. When a node carries a checked
    attribute, the value is compared with the allowed values. A given
    "attribute=value" key is reported once; later occurrences are skipped.

    Args:
        node: Document root
        rule_set: Rule set with attribute whitelists
        seen: Keys already reported for this file, updated in place

    Returns:
        Tuple of (findings, matched) where matched is True when any node
        carried a whitelisted value, even one already reported

    Example:
        >>> findings, matched = match_attributes(tree, rule_set, seen=set())
        >>> [f.format() for f in findings]
        ['Attribute mismatch (global): staffNumber found 9999, expected one of 2950, 26368, 6936']
    """
    if seen is None:
        seen = set()

    whitelists = {
        normalize_tag(attribute): allowed
        for attribute, allowed in rule_set.required_attribute_values.items()
    }
    findings: List[Finding] = []
    matched = False

    if not whitelists:
        return findings, matched

    for current in iter_nodes(node):
        if not current.attributes:
            continue
        for attribute, allowed in whitelists.items():
            if attribute not in current.attributes:
                continue
            value = current.attributes[attribute]
            key = f"{attribute}={value}"
            is_match = value in allowed
            if is_match:
                matched = True
            if key in seen:
                continue
            seen.add(key)
            findings.append(Finding(
                kind=FindingKind.ATTRIBUTE_MATCH if is_match else FindingKind.ATTRIBUTE_MISMATCH,
                subject=attribute,
                scope=rule_set.name,
                detail=value,
                expected=() if is_match else allowed,
            ))

    return findings, matched


class RuleEvaluator:
    """
    Applies a RuleConfig to documents.

    Conditions are evaluated per document first; then every rule set whose
    condition holds runs its tag checks and attribute checks. All rule sets
    of one document share a single deduplication set.
    """

    def __init__(self, config: RuleConfig):
        """
        Initialize rule evaluator with a loaded configuration.

        Args:
            config: Rule sets, classifier and conditions
        """
        self.config = config

    def evaluate_conditions(self, file_name: str, text: str,
                            tree: Optional[XmlNode] = None) -> Dict[str, bool]:
        """
        Evaluate the classifier and every declared condition for a document.

        A condition that fails to evaluate is logged and treated as False,
        so the rule sets gated on it are skipped.

        Args:
            file_name: Document name, for log messages
            text: Raw document text
            tree: Adapted tree, or None when parsing failed

        Returns:
            Condition name to result
        """
        results = {
            STATIC_DATA_CONDITION: self.config.classifier.is_static_data(text, tree=tree),
        }

        ctx = PredicateContext(file_name, text, tree)
        for name, expression in self.config.conditions.items():
            try:
                results[name] = evaluate_predicate(expression, ctx)
            except PredicateError as e:
                logger.warning("%s: failed to evaluate condition '%s': %s", file_name, name, e)
                results[name] = False

        return results

    def applicable_rule_sets(self, conditions: Dict[str, bool]) -> List[RuleSet]:
        return [
            rule_set for rule_set in self.config.rule_sets
            if rule_set.apply_if is None or conditions.get(rule_set.apply_if, False)
        ]

    def evaluate(self, file_name: str, text: str, tree: XmlNode) -> FileReport:
        """
        Evaluate a parsed document against all applicable rule sets.

        Executes in order:
        1. Evaluate conditions (static_data and declared conditions)
        2. Tag checks of each applicable rule set, in config order
        3. Attribute checks of each applicable rule set, in config order

        Args:
            file_name: Name shown in the report
            text: Raw document text
            tree: Adapted document tree

        Returns:
            FileReport with findings of both polarities
        """
        conditions = self.evaluate_conditions(file_name, text, tree)
        rule_sets = self.applicable_rule_sets(conditions)

        tag_findings: List[Finding] = []
        for rule_set in rule_sets:
            tag_findings.extend(check_tags(tree, rule_set))

        seen: Set[str] = set()
        attribute_findings: List[Finding] = []
        attribute_matched = False
        for rule_set in rule_sets:
            findings, matched = match_attributes(tree, rule_set, seen)
            attribute_findings.extend(findings)
            attribute_matched = attribute_matched or matched

        return aggregate(
            file_name,
            tag_findings,
            attribute_findings,
            attribute_matched=attribute_matched,
            static_data=conditions[STATIC_DATA_CONDITION],
        )
