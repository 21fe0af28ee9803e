#!/usr/bin/env python3
"""
Static Data Classifier and Predicate Engine

This module decides which conditional rule sets apply to a document. The
central condition is "static_data": whether a document belongs to the static
data category, which enables the static rule set.

Supported Predicates:
- text_contains(marker): Raw document text contains a marker token
- tag_present(name): Tag occurs anywhere below the root
- any_tag_present(tags=[...]): Any of the tags occurs below the root
- attribute_present(name): Any element carries the attribute

Classification strategies:
- textual: marker substring search on the raw text, works without a parse
- structural: tag search on the adapted tree, falls back to textual when the
  document could not be parsed
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from xml_tree import XmlNode, iter_nodes, normalize_tag


logger = logging.getLogger(__name__)

STRATEGY_TEXTUAL = "textual"
STRATEGY_STRUCTURAL = "structural"
STRATEGIES = (STRATEGY_TEXTUAL, STRATEGY_STRUCTURAL)

STATIC_DATA_CONDITION = "static_data"


class PredicateContext:
    """
    Context object for predicate evaluation containing document state.

    Attributes:
        file_name: Name of the document being validated
        text: Raw document text (always available)
        tree: Adapted tree, or None when the document failed to parse
    """

    def __init__(self, file_name: str, text: str, tree: Optional[XmlNode] = None):
        self.file_name = file_name
        self.text = text
        self.tree = tree


class PredicateError(Exception):
    """Base exception for predicate evaluation errors."""
    pass


class PredicateParseError(PredicateError):
    """Exception raised when predicate expression cannot be parsed."""
    pass


class PredicateEvaluationError(PredicateError):
    """Exception raised when predicate evaluation fails."""
    pass


def _require_tree(name: str, ctx: PredicateContext) -> XmlNode:
    if ctx.tree is None:
        raise PredicateEvaluationError(f"{name} requires a parsed document")
    return ctx.tree


# Predicate function implementations

def text_contains(marker: str, ctx: PredicateContext) -> bool:
    """
    Check if the raw document text contains a marker token.

    Example:
        >>> ctx = PredicateContext("a.xml", "<GetStaticDataRS/>")
        >>> text_contains("StaticData", ctx)
        True
    """
    return marker in ctx.text


def tag_present(name: str, ctx: PredicateContext) -> bool:
    """
    Check if a tag occurs anywhere below the document root.

    Raises:
        PredicateEvaluationError: If the document was not parsed
    """
    tree = _require_tree("tag_present", ctx)
    return contains_any_tag(tree, [name])


def any_tag_present(tags: Optional[List[str]] = None, ctx: Optional[PredicateContext] = None) -> bool:
    """
    Check if any of the given tags occurs below the document root.

    Example:
        >>> ctx = PredicateContext("a.xml", text, tree=parse_xml(text))
        >>> any_tag_present(tags=["city", "baseCode"], ctx=ctx)
        True
    """
    if ctx is None:
        raise PredicateEvaluationError("any_tag_present requires context parameter")
    tree = _require_tree("any_tag_present", ctx)
    return contains_any_tag(tree, tags or [])


def attribute_present(name: str, ctx: PredicateContext) -> bool:
    """Check if any element, root included, carries the attribute."""
    tree = _require_tree("attribute_present", ctx)
    name = normalize_tag(name)
    return any(name in node.attributes for node in iter_nodes(tree))


# Predicate registry mapping function names to implementations
PREDICATES = {
    'text_contains': text_contains,
    'tag_present': tag_present,
    'any_tag_present': any_tag_present,
    'attribute_present': attribute_present,
}


def parse_predicate_expression(expression: str) -> Tuple[str, Dict[str, Any]]:
    """
    Parse a predicate expression string into function name and arguments.

    Supports:
    - Positional string argument: func_name("arg")
    - Keyword arguments: func_name(tags=["A", "B"])

    Args:
        expression: Predicate expression string

    Returns:
        Tuple of (function_name, kwargs_dict)

    Raises:
        PredicateParseError: If expression is malformed

    Example:
        >>> parse_predicate_expression('text_contains("StaticData")')
        ('text_contains', {'marker': 'StaticData'})
        >>> parse_predicate_expression('any_tag_present(tags=["city", "base"])')
        ('any_tag_present', {'tags': ['city', 'base']})
    """
    expression = expression.strip()

    match = re.match(r'^(\w+)\((.*)\)$', expression)
    if not match:
        raise PredicateParseError(
            f"Invalid predicate expression format: {expression}. "
            "Expected format: function_name(args)"
        )

    func_name = match.group(1)
    args_str = match.group(2).strip()

    if func_name not in PREDICATES:
        raise PredicateParseError(
            f"Unknown predicate function: {func_name}. "
            f"Available predicates: {', '.join(PREDICATES.keys())}"
        )

    if not args_str:
        return func_name, {}

    if re.match(r'^\w+=', args_str):
        return func_name, _parse_keyword_args(args_str, expression)

    return func_name, _parse_positional_args(func_name, args_str, expression)


def _parse_keyword_args(args_str: str, original_expr: str) -> Dict[str, Any]:
    """Parse keyword argument format: key=value."""
    kwargs = {}
    kwarg_pattern = r'(\w+)=(\[[^\]]*\]|"[^"]*")'

    for match in re.finditer(kwarg_pattern, args_str):
        kwargs[match.group(1)] = _parse_value(match.group(2), original_expr)

    if not kwargs:
        raise PredicateParseError(
            f"Failed to parse keyword arguments in: {original_expr}"
        )

    return kwargs


def _parse_positional_args(func_name: str, args_str: str, original_expr: str) -> Dict[str, Any]:
    """Parse a single positional argument and map it to its parameter name."""
    positional_params = {
        'text_contains': 'marker',
        'tag_present': 'name',
        'attribute_present': 'name',
    }

    if func_name not in positional_params:
        raise PredicateParseError(
            f"Function {func_name} does not accept positional arguments. "
            f"Use keyword arguments instead."
        )

    return {positional_params[func_name]: _parse_value(args_str, original_expr)}


def _parse_value(value_str: str, original_expr: str) -> Any:
    value_str = value_str.strip()

    if value_str.startswith('[') and value_str.endswith(']'):
        inner = value_str[1:-1].strip()
        return re.findall(r'"([^"]*)"', inner) if inner else []

    if len(value_str) >= 2 and value_str.startswith('"') and value_str.endswith('"'):
        return value_str[1:-1]

    raise PredicateParseError(
        f"Invalid value format in: {original_expr}. "
        f"Expected quoted string or list, got: {value_str}"
    )


def evaluate_predicate(expression: str, ctx: PredicateContext) -> bool:
    """
    Evaluate a predicate expression with given context.

    Args:
        expression: Predicate expression string to evaluate
        ctx: Context containing document text and tree

    Returns:
        Boolean result of predicate evaluation

    Raises:
        PredicateParseError: If expression is malformed
        PredicateEvaluationError: If evaluation fails
    """
    func_name, kwargs = parse_predicate_expression(expression)
    predicate_func = PREDICATES[func_name]
    kwargs['ctx'] = ctx

    try:
        result = predicate_func(**kwargs)
    except PredicateError:
        raise
    except TypeError as e:
        raise PredicateEvaluationError(
            f"Invalid arguments for predicate {func_name}: {e}"
        ) from e

    if not isinstance(result, bool):
        raise PredicateEvaluationError(
            f"Predicate {func_name} returned non-boolean value: {result}"
        )

    return result


def contains_any_tag(tree: XmlNode, tags: Iterable[str]) -> bool:
    """
    Check whether any of the tags occurs below the root of a tree.

    Stops at the first hit. An empty tree contains no tags.
    """
    wanted = {normalize_tag(tag) for tag in tags}
    if not wanted:
        return False
    for node in iter_nodes(tree, include_root=False):
        if node.tag in wanted:
            return True
    return False


class StaticDataClassifier:
    """
    Decides whether a document belongs to the static data category.

    The textual strategy searches the raw text for marker tokens and never
    needs a parse. The structural strategy searches the adapted tree for
    static-only tags; without a tree it falls back to the markers, so a parse
    failure cannot make a static document look non-static.
    """

    def __init__(self, strategy: str = STRATEGY_TEXTUAL,
                 markers: Iterable[str] = (),
                 static_tags: Iterable[str] = (),
                 ignore_case: bool = False):
        if strategy not in STRATEGIES:
            raise ValueError(
                f"Unknown classifier strategy: {strategy}. "
                f"Expected one of: {', '.join(STRATEGIES)}"
            )
        self.strategy = strategy
        self.markers = tuple(markers)
        self.static_tags = tuple(static_tags)
        self.ignore_case = ignore_case

    def matches_text(self, text: str) -> bool:
        """Textual strategy: any marker occurs in the raw text."""
        if not text:
            return False
        if self.ignore_case:
            haystack = text.lower()
            return any(marker.lower() in haystack for marker in self.markers)
        return any(marker in text for marker in self.markers)

    def matches_tree(self, tree: XmlNode) -> bool:
        """Structural strategy: any static-only tag occurs below the root."""
        return contains_any_tag(tree, self.static_tags)

    def is_static_data(self, document: Any, tree: Optional[XmlNode] = None) -> bool:
        """
        Classify a document.

        Args:
            document: Raw text, or an already adapted XmlNode
            tree: Adapted tree for the raw text, or None if parsing failed

        Returns:
            True if the document is static data
        """
        if isinstance(document, XmlNode):
            return self.matches_tree(document)

        if self.strategy == STRATEGY_STRUCTURAL and tree is not None:
            return self.matches_tree(tree)

        if self.strategy == STRATEGY_STRUCTURAL:
            logger.debug("No parsed tree available, classifying by markers")
        return self.matches_text(document)
