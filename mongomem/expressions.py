"""
### Expressions

Aggregation stages (`$project`, `$group`) compute values with *expressions*.
An expression is compiled once into a Python callable: `callable(document) -> value`.

The syntax:

* `"$field"`, `"$field.path"`: the value of a field (or `MISSING`)
* A scalar: a literal value: `1`, `"text"`, `None`
* `{ '$literal': value }`: a value taken as is, even if it looks like an expression: `{'$literal': '$price'}`
* `{ 'name': <expression>, ... }`: an object with computed fields
* `[ <expression>, ... ]`: an array of computed values
* `{ '$operator': <arguments> }`: an operator. See `OPERATORS`.

Arithmetic operators:

* `$add`: `{ '$add': [a, b, ...] }`
* `$subtract`: `{ '$subtract': [a, b] }`
* `$multiply`: `{ '$multiply': [a, b, ...] }`
* `$divide`: `{ '$divide': [a, b] }`
* `$mod`: `{ '$mod': [a, b] }`. The result has the sign of the divisor: `{'$mod': [1997, 10]}` is `7`
* `$floor`: `{ '$floor': a }`

If any argument is null or missing, the result is null.
If any argument is not a number, `TypeMismatchError` is raised.
Division by zero is an `InvalidSpecError`.

Other operators:

* `$concat`: `{ '$concat': [a, b, ...] }`: concatenate strings. Null if any argument is null.
* `$ifNull`: `{ '$ifNull': [a, replacement] }`: the replacement if `a` is null or missing

Example: bucket books by decade:

```python
{ '$subtract': ['$published_year', { '$mod': ['$published_year', 10] }] }
```
"""

import math
from functools import reduce

from .exc import InvalidSpecError, TypeMismatchError
from .values import MISSING, get_path, is_number


def compile_expression(expression):
    """ Compile an expression into a callable

        :param expression: The expression
        :return: callable(document) -> value
        :raises InvalidSpecError: malformed expression
    """
    # Field reference
    if isinstance(expression, str) and expression.startswith('$'):
        path = expression[1:]
        if not path or path.startswith('$'):
            raise InvalidSpecError('Invalid field reference: {!r}'.format(expression))
        return lambda doc: get_path(doc, path)

    # Operator or object
    if isinstance(expression, dict):
        operators = [k for k in expression if isinstance(k, str) and k.startswith('$')]
        if operators:
            if len(expression) != 1:
                raise InvalidSpecError('An operator expression must have exactly one key: {!r}'.format(expression))
            operator, args = next(iter(expression.items()))
            return _compile_operator(operator, args)
        return _compile_object(expression)

    # Array
    if isinstance(expression, (list, tuple)):
        compiled = [compile_expression(item) for item in expression]
        return lambda doc: [_none_if_missing(f(doc)) for f in compiled]

    # Literal
    return lambda doc: expression


def _compile_object(expression):
    compiled = []
    for name, value in expression.items():
        if not isinstance(name, str) or not name or '.' in name:
            raise InvalidSpecError('Invalid field name in an object expression: {!r}'.format(name))
        compiled.append((name, compile_expression(value)))

    def evaluate(doc):
        result = {}
        for name, f in compiled:
            value = f(doc)
            if value is not MISSING:
                result[name] = value
        return result
    return evaluate


def _compile_operator(operator, args):
    if operator == '$literal':
        return lambda doc: args

    try:
        compile_operator, arity = OPERATORS[operator]
    except KeyError:
        raise InvalidSpecError('Unsupported expression operator: {}'.format(operator))

    # A single argument may be given without the array
    if not isinstance(args, (list, tuple)):
        args = [args]

    if arity is not None and len(args) != arity:
        raise InvalidSpecError('{} takes exactly {} arguments; {} provided'.format(operator, arity, len(args)))
    if not args:
        raise InvalidSpecError('{} requires arguments'.format(operator))

    return compile_operator(operator, [compile_expression(arg) for arg in args])


def _none_if_missing(value):
    return None if value is MISSING else value


def _is_null(value):
    return value is None or value is MISSING


def _numeric(operator, function):
    """ Make an arithmetic operator: null-propagating, and strict about numbers """
    def compile_operator(operator_name, args):
        def evaluate(doc):
            values = [f(doc) for f in args]
            if any(_is_null(v) for v in values):
                return None
            for v in values:
                if not is_number(v):
                    raise TypeMismatchError(operator, v, 'a number')
            return function(values)
        return evaluate
    return compile_operator


def _divide(values):
    a, b = values
    if b == 0:
        raise InvalidSpecError('$divide: division by zero')
    return a / b


def _mod(values):
    a, b = values
    if b == 0:
        raise InvalidSpecError('$mod: division by zero')
    return a % b


def _floor(values):
    return math.floor(values[0])


def _compile_concat(operator, args):
    def evaluate(doc):
        values = [f(doc) for f in args]
        if any(_is_null(v) for v in values):
            return None
        for v in values:
            if not isinstance(v, str):
                raise TypeMismatchError(operator, v, 'a string')
        return ''.join(values)
    return evaluate


def _compile_if_null(operator, args):
    expression, replacement = args

    def evaluate(doc):
        value = expression(doc)
        return replacement(doc) if _is_null(value) else value
    return evaluate


#: Expression operators: { name: (compile(operator, compiled_args) -> callable, arity | None) }
OPERATORS = {
    '$add': (_numeric('$add', sum), None),
    '$subtract': (_numeric('$subtract', lambda v: v[0] - v[1]), 2),
    '$multiply': (_numeric('$multiply', lambda v: reduce(lambda a, b: a * b, v)), None),
    '$divide': (_numeric('$divide', _divide), 2),
    '$mod': (_numeric('$mod', _mod), 2),
    '$floor': (_numeric('$floor', _floor), 1),
    '$concat': (_compile_concat, None),
    '$ifNull': (_compile_if_null, 2),
}
