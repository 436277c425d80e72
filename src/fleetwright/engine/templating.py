"""
Fleetwright Templating Engine

Jinja2-based templating with a small filter set for variable expansion,
plus condition evaluation in either Jinja2 expression syntax or the
parenthesized prefix form, e.g. ``(eq port 8080)``.
"""

import base64
import json
import os
import re
from typing import Any, Callable, Dict, List, Optional

import yaml
from jinja2 import Environment, StrictUndefined, TemplateSyntaxError, Undefined, UndefinedError

from fleetwright.engine.errors import ExpressionError, UndefinedVariable


def _filter_default(value: Any, default: Any = '', boolean: bool = False) -> Any:
    """Return default if value is undefined or None (or falsy with boolean=True)."""
    if isinstance(value, Undefined) or value is None:
        return default
    if boolean and not value:
        return default
    return value


def _filter_to_yaml(value: Any) -> str:
    """Convert value to YAML string."""
    return yaml.safe_dump(value, default_flow_style=False)


def _filter_from_yaml(value: str) -> Any:
    """Parse a YAML string."""
    return yaml.safe_load(value)


def _filter_bool(value: Any) -> bool:
    """Convert value to boolean."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in ('true', 'yes', '1', 'on')
    return bool(value)


def _filter_regex_replace(value: str, pattern: str, replacement: str) -> str:
    """Regex replacement in string."""
    return re.sub(pattern, replacement, str(value))


def _filter_b64encode(value: Any) -> str:
    if isinstance(value, bytes):
        return base64.b64encode(value).decode('utf-8')
    return base64.b64encode(str(value).encode('utf-8')).decode('utf-8')


CUSTOM_FILTERS: Dict[str, Callable[..., Any]] = {
    'default': _filter_default,
    'd': _filter_default,
    'lower': lambda x: str(x).lower(),
    'upper': lambda x: str(x).upper(),
    'replace': lambda s, old, new: str(s).replace(old, new),
    'to_json': lambda x: json.dumps(x),
    'from_json': lambda x: json.loads(x),
    'to_yaml': _filter_to_yaml,
    'from_yaml': _filter_from_yaml,
    'bool': _filter_bool,
    'int': lambda x: int(x),
    'string': lambda x: str(x),
    'trim': lambda x: str(x).strip(),
    'basename': lambda p: os.path.basename(str(p)),
    'dirname': lambda p: os.path.dirname(str(p)),
    'regex_replace': _filter_regex_replace,
    'b64decode': lambda x: base64.b64decode(x).decode('utf-8'),
    'b64encode': _filter_b64encode,
}


# Prefix form operators mapped to the Jinja2 expression they produce
_BINARY_OPS = {
    'eq': '==',
    'ne': '!=',
    'gt': '>',
    'gte': '>=',
    'lt': '<',
    'lte': '<=',
}
_PREFIX_OPERATORS = frozenset(_BINARY_OPS) | {'and', 'or', 'not', 'contains', 'defined'}
_PREFIX_HEAD = re.compile(r'^\(\s*([^\s()]+)')
_PREFIX_TOKEN = re.compile(r"""\s*(\(|\)|"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*'|[^\s()]+)""")
_FULL_EXPRESSION = re.compile(r'^\s*\{\{(.*)\}\}\s*$', re.DOTALL)


def _tokenize_prefix(source: str) -> List[str]:
    tokens = []
    pos = 0
    source = source.rstrip()
    while pos < len(source):
        match = _PREFIX_TOKEN.match(source, pos)
        if not match:
            raise ExpressionError("Malformed condition", template=source)
        tokens.append(match.group(1))
        pos = match.end()
    return tokens


def _parse_prefix(tokens: List[str], source: str) -> Any:
    """Parse tokens into nested lists; atoms stay as strings."""
    if not tokens:
        raise ExpressionError("Unexpected end of condition", template=source)
    token = tokens.pop(0)
    if token == '(':
        node = []
        while tokens and tokens[0] != ')':
            node.append(_parse_prefix(tokens, source))
        if not tokens:
            raise ExpressionError("Unbalanced parentheses in condition", template=source)
        tokens.pop(0)
        return node
    if token == ')':
        raise ExpressionError("Unexpected ')' in condition", template=source)
    return token


def _prefix_to_jinja(node: Any, source: str) -> str:
    if isinstance(node, str):
        return node
    if not node:
        raise ExpressionError("Empty expression in condition", template=source)

    op, args = node[0], node[1:]
    if not isinstance(op, str):
        raise ExpressionError("Operator expected in condition", template=source)

    def arity(count: int) -> None:
        if len(args) != count:
            raise ExpressionError(
                f"'{op}' takes {count} argument(s), got {len(args)}", template=source
            )

    if op in _BINARY_OPS:
        arity(2)
        left, right = (_prefix_to_jinja(a, source) for a in args)
        return f"({left} {_BINARY_OPS[op]} {right})"
    if op in ('and', 'or'):
        if not args:
            raise ExpressionError(f"'{op}' needs at least one argument", template=source)
        return '(' + f' {op} '.join(_prefix_to_jinja(a, source) for a in args) + ')'
    if op == 'not':
        arity(1)
        return f"(not {_prefix_to_jinja(args[0], source)})"
    if op == 'contains':
        arity(2)
        container, needle = (_prefix_to_jinja(a, source) for a in args)
        return f"({needle} in {container})"
    if op == 'defined':
        arity(1)
        return f"({_prefix_to_jinja(args[0], source)} is defined)"
    raise ExpressionError(f"Unknown operator '{op}' in condition", template=source)


def translate_prefix(source: str) -> str:
    """
    Translate a prefix condition into an equivalent Jinja2 expression.

    Example:
        >>> translate_prefix('(and (eq port 8080) (defined name))')
        '((port == 8080) and (name is defined))'
    """
    tokens = _tokenize_prefix(source)
    tree = _parse_prefix(tokens, source)
    if tokens:
        raise ExpressionError("Trailing input after condition", template=source)
    return _prefix_to_jinja(tree, source)


def prefix_operator(source: str) -> Optional[str]:
    """Return the operator of a prefix condition, or None for a Jinja2 expression."""
    match = _PREFIX_HEAD.match(source)
    if match and match.group(1) in _PREFIX_OPERATORS:
        return match.group(1)
    return None


class TemplateEngine:
    """
    Jinja2 templating engine.

    Provides:
    - Variable interpolation in strings
    - Recursive template rendering in dicts/lists
    - Native evaluation of bare expressions (loop item lists)
    - Condition evaluation

    Referencing an undefined variable without a ``default`` is an error.
    The engine holds no state between calls.
    """

    def __init__(self):
        self.env = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )
        for name, func in CUSTOM_FILTERS.items():
            self.env.filters[name] = func

    def render(self, template_str: str, variables: Dict[str, Any]) -> str:
        """
        Render a template string with variables.

        Args:
            template_str: String potentially containing {{ }} expressions
            variables: Dictionary of variables for rendering

        Returns:
            Rendered string

        Raises:
            UndefinedVariable: If a referenced variable is undefined
            ExpressionError: If the template is invalid
        """
        if not isinstance(template_str, str):
            return template_str

        # Fast path: no template markers
        if '{{' not in template_str and '{%' not in template_str:
            return template_str

        try:
            template = self.env.from_string(template_str)
            return template.render(variables)
        except UndefinedError as e:
            raise UndefinedVariable(str(e), template=template_str)
        except TemplateSyntaxError as e:
            raise ExpressionError(f"Template syntax error: {e}", template=template_str)
        except Exception as e:
            raise ExpressionError(f"Template error: {e}", template=template_str)

    def render_recursive(self, data: Any, variables: Dict[str, Any]) -> Any:
        """
        Recursively render templates in a data structure.

        Args:
            data: Data structure (dict, list, or scalar)
            variables: Dictionary of variables for rendering

        Returns:
            Data structure with all templates rendered
        """
        if isinstance(data, str):
            return self.render(data, variables)

        if isinstance(data, dict):
            return {
                self.render(k, variables) if isinstance(k, str) else k:
                self.render_recursive(v, variables)
                for k, v in data.items()
            }

        if isinstance(data, (list, tuple)):
            return [self.render_recursive(item, variables) for item in data]

        return data

    def evaluate(self, expression: str, variables: Dict[str, Any]) -> Any:
        """
        Evaluate a bare Jinja2 expression and return the native value.

        A string fully wrapped in ``{{ }}`` is unwrapped first, so
        ``"{{ packages }}"`` yields the list itself rather than its text.
        """
        match = _FULL_EXPRESSION.match(expression)
        if match:
            expression = match.group(1)

        try:
            compiled = self.env.compile_expression(expression, undefined_to_none=False)
            value = compiled(**variables)
            if isinstance(value, Undefined):
                # Forces StrictUndefined to raise with its own message
                str(value)
            return value
        except UndefinedError as e:
            raise UndefinedVariable(str(e), template=expression)
        except TemplateSyntaxError as e:
            raise ExpressionError(f"Expression syntax error: {e}", template=expression)
        except TypeError as e:
            raise ExpressionError(f"Incompatible operands: {e}", template=expression)
        except Exception as e:
            raise ExpressionError(f"Expression error: {e}", template=expression)

    def evaluate_condition(self, condition: Any, variables: Dict[str, Any]) -> bool:
        """
        Evaluate a condition to a boolean.

        Args:
            condition: Jinja2 expression (without {{ }}), prefix form such as
                ``(eq port 8080)``, or a literal bool
            variables: Dictionary of variables for evaluation

        Returns:
            Boolean result of the condition

        Raises:
            UndefinedVariable: If the condition references an undefined variable
            ExpressionError: If the condition is malformed or compares
                incompatible values
        """
        if condition is None:
            return True
        if isinstance(condition, bool):
            return condition

        source = str(condition).strip()
        if not source:
            return True
        operator = prefix_operator(source)
        if operator is not None:
            try:
                source = translate_prefix(source)
            except ExpressionError:
                # ``(not x) and y`` is also valid Jinja2
                if operator != 'not':
                    raise

        return self._to_bool(self.evaluate(source, variables))

    def _to_bool(self, value: Any) -> bool:
        """Convert a value to boolean."""
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            value_lower = value.lower().strip()
            if value_lower in ('true', 'yes', '1', 'on'):
                return True
            if value_lower in ('false', 'no', '0', 'off', ''):
                return False
            return True
        return bool(value)
