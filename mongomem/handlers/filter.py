"""
### Filter Operation
Filtering selects the documents that match your criteria.

Example of filtering:

```python
books.find({
    # all conditions are AND-ed together
    'published_year': { '$gte': 2000, '$lte': 2010 },  # 2000..2010
    'genre': 'Fiction',  # genre = "Fiction"
})
```

#### Field Operators
The following [MongoDB query operators](https://docs.mongodb.com/manual/reference/operator/query/)
are supported:

* `{ a: 1 }` - equality check: `field = value`. This is a shortcut for the `$eq` operator.
* `{ a: { $eq: 1 } }` - equality check: `field = value` (alias).
* `{ a: { $lt: 1 } }`  - less than: `field < value`
* `{ a: { $lte: 1 } }` - less or equal than: `field <= value`
* `{ a: { $ne: 1 } }` - inequality check: `field != value`.
* `{ a: { $gte: 1 } }` - greater or equal than: `field >= value`
* `{ a: { $gt: 1 } }` - greater than: `field > value`
* `{ a: { $prefix: 'x' } }` - prefix: the string starts with the given value
* `{ a: { $regex: '^x' } }` - the string matches a regular expression
* `{ a: { $in: [...] } }` - any of. Field is equal to any of the given array of values.
* `{ a: { $nin: [...] } }` - none of. Field is not equal to any of the given array of values.
* `{ a: { $exists: true } }` - the field is present in the document

Comparisons only happen between values of the same kind: numbers with numbers, strings with strings.
`{ price: { $gt: 10 } }` never matches `price: "12"`.

A missing field only matches a comparison with `null`: `{ a: null }` matches both `{a: null}` and `{}`.

Supports the following operators on an array field:

* `{ arr: 1 }` - containment check: the array contains the given value, or equals it.
* `{ arr: { $gt: 1 } }` - any of the elements is greater than 1. Other scalar operators work the same way.
* `{ arr: { $ne: 1 } }` - non-containment check: the array does not contain the value.
* `{ arr: { $size: 0 } }` - has a length of N (zero, to check for an empty array)
* `{ arr: { $all: [...] } }` - contains all values from the given array

#### Boolean Operators

* `{ $or: [ {..criteria..}, .. ] }`  - any is true
* `{ $and: [ {..criteria..}, .. ] }` - all are true
* `{ $nor: [ {..criteria..}, .. ] }` - none is true
* `{ $not: { ..criteria.. } }` - negation

#### Nested fields
Use a dot to reach into nested objects and arrays:

```python
books.find({'publisher.country': 'UK', 'tags.0': 'classic'})
```
"""

import re

from .base import MongoQueryHandlerBase
from ..exc import InvalidSpecError, TypeMismatchError
from ..values import MISSING, Kind, kind_of, is_array, get_path, values_equal, compare


# region Filter Expression Classes

class FilterExpressionBase:
    """ An expression from the MongoFilter object """

    __slots__ = ('operator_str', 'value')

    def __init__(self, operator_str, value):
        self.operator_str = operator_str
        self.value = value

    def compile_predicate(self):
        """ Compiles the expression into a predicate: a callable(document) -> bool """
        raise NotImplementedError()

    @staticmethod
    def anded_together(predicates):
        """ Take a list of predicates and AND them together into a single predicate """
        predicates = list(predicates)

        # No conditions: everything matches
        if not predicates:
            return lambda doc: True
        # Just one: no wrapping
        if len(predicates) == 1:
            return predicates[0]
        return lambda doc: all(p(doc) for p in predicates)


class FilterBooleanExpression(FilterExpressionBase):
    """ A boolean expression.

        Consists of: an operator ($and, etc), and a value (list of lists of FilterExpressionBase)
    """

    def __repr__(self):
        return '({}: {})'.format(self.operator_str, self.value)

    def compile_predicate(self):
        # self.operator_str: $and, $or, $nor, $not
        # self.value: list[FilterExpressionBase] for $not,
        #   list[list[FilterExpressionBase]] for the rest: every inner list is a separate criteria object

        if self.operator_str == '$not':
            criterion = self.anded_together(c.compile_predicate() for c in self.value)
            return lambda doc: not criterion(doc)

        criteria = [self.anded_together(c.compile_predicate() for c in cs)
                    for cs in self.value]

        if self.operator_str == '$and':
            return lambda doc: all(c(doc) for c in criteria)
        elif self.operator_str == '$or':
            return lambda doc: any(c(doc) for c in criteria)
        elif self.operator_str == '$nor':
            return lambda doc: not any(c(doc) for c in criteria)
        else:
            raise NotImplementedError('Unknown operator: {}'.format(self.operator_str))


class FilterFieldExpression(FilterExpressionBase):
    """ An expression involving a field

        Consists of: an operator ($eq, etc), a field name, and a value to compare the field to
    """

    __slots__ = ('field_name', 'operator_lambda', 'fan_out', 'negated')

    def __init__(self, field_name, operator_str, operator_lambda, value, fan_out=True, negated=False):
        """ Init a field expression

        :param field_name: Name of the field referenced (possibly, with a dot!)
        :param operator_str: The operator to use, e.g. $eq
        :param operator_lambda: A callable that implements the operator: (field_value, value) -> bool
        :param value: The value the operator is applied to
        :param fan_out: Apply the operator to every element of an array field, not just to the array itself
        :param negated: Negate the result. This is how $ne and $nin are implemented.
        """
        super(FilterFieldExpression, self).__init__(operator_str, value)
        self.field_name = field_name
        self.operator_lambda = operator_lambda
        self.fan_out = fan_out
        self.negated = negated

    def __repr__(self):
        return '{} {} {!r}'.format(self.field_name, self.operator_str, self.value)

    def test_value(self, field_value):
        """ Test a field value against this expression """
        op, value = self.operator_lambda, self.value

        # Array fields: the array itself, or any of its elements
        if self.fan_out and is_array(field_value):
            matches = op(field_value, value) or any(op(v, value) for v in field_value)
        else:
            matches = op(field_value, value)

        return not matches if self.negated else bool(matches)

    def compile_predicate(self):
        field_name, test_value = self.field_name, self.test_value
        return lambda doc: test_value(get_path(doc, field_name))

    @property
    def is_indexable(self):
        """ Can an index answer this expression? """
        return (
            not self.negated
            and self.operator_str in MongoFilter._indexable_operators
            # The value has to be a scalar, or a list of scalars for $in
            and all(kind_of(v) not in (Kind.MAPPING, Kind.ARRAY)
                    for v in (self.value if self.operator_str == '$in' else [self.value]))
        )

# endregion


def _range_operator(check):
    """ Make a lambda for a comparison operator: $lt, $gt, etc """
    def operator_lambda(field_value, value):
        result = compare(field_value, value)
        return result is not None and check(result)
    return operator_lambda


def _op_eq(field_value, value):
    return values_equal(field_value, value)


def _op_in(field_value, value):
    return any(values_equal(field_value, v) for v in value)


def _op_prefix(field_value, value):
    return isinstance(field_value, str) and field_value.startswith(value)


def _op_regex(field_value, value):
    return isinstance(field_value, str) and value.search(field_value) is not None


def _op_exists(field_value, value):
    return (field_value is not MISSING) == bool(value)


def _op_size(field_value, value):
    return is_array(field_value) and len(field_value) == value


def _op_all(field_value, value):
    # An empty list matches nothing
    return is_array(field_value) and bool(value) and all(
        any(values_equal(item, v) for item in field_value)
        for v in value
    )


class MongoFilter(MongoQueryHandlerBase):
    """ MongoDB filter expression.

        This is essentially used for filtering, but it is also used by the aggregation pipeline:
        the `$match` stage is a MongoFilter.

        Parsing and compilation are two separate steps:
        1. input() parses the criteria into a list of FilterExpressionBase objects
        2. compile_predicate() turns them into a single callable(document) -> bool

        The parsed expressions are public: `MongoQuery` looks at them to see which ones an index can answer.
    """

    query_object_section_name = 'filter'

    def __init__(self, collection_name, force_filter=None, scalar_operators=None):
        """ Init a filter expression

        :param collection_name: Collection to work with
        :param force_filter: A filtering condition that will be forcefully applied to the query.
            Can be:
                * a dict, which will become ANDed to every request ;
                * a `lambda document:` predicate.
        :param scalar_operators: A dict of additional operators to recognize.
            A mapping: {'$operator': lambda field_value, value: bool}. See class body for examples.
        :type scalar_operators: dict[str, lambda]
        """
        super(MongoFilter, self).__init__(collection_name)

        # On input
        #: list[FilterExpressionBase]: the parsed criteria, to be ANDed together
        self.expressions = None
        #: list[callable]: predicates that come from `force_filter` callables
        self.extra_predicates = []
        #: list[FilterExpressionBase]: expressions that an index has already answered. Set by MongoQuery.
        self.covered_expressions = ()

        # Extra configuration
        self._extra_scalar_ops = scalar_operators or {}

        # Extra configuraion: force_filter
        if force_filter is None:
            self.force_filter = None
        elif callable(force_filter):
            # When a callable, just store it
            self.force_filter = force_filter
        elif isinstance(force_filter, dict):
            # When a dict, store it, and validate it
            self.force_filter = force_filter
            self._parse_criteria(self.force_filter)  # validate force_filter
        else:
            raise ValueError(force_filter)

    # Operators that are applied to every element of an array field (fan out)
    _operators_scalar = {
        # operator => lambda field_value, value
        '$eq':  _op_eq,
        '$lt':  _range_operator(lambda r: r < 0),
        '$lte': _range_operator(lambda r: r <= 0),
        '$gt':  _range_operator(lambda r: r > 0),
        '$gte': _range_operator(lambda r: r >= 0),
        '$in':  _op_in,
        '$prefix': _op_prefix,
        '$regex': _op_regex,
    }

    # Operators that are a negation of another operator.
    # Note that negation is applied after the fan out:
    # {tags: {$ne: 'a'}} means that *none* of the elements is 'a'.
    _operators_negated = {
        '$ne': '$eq',
        '$nin': '$in',
    }

    # Operators applied to the field value as a whole
    _operators_field = {
        '$exists': _op_exists,
        '$size': _op_size,
        '$all': _op_all,
    }

    # List of operators that always require array argument
    _operators_require_array_value = frozenset(('$all', '$in', '$nin'))

    # List of comparison operators: they can only compare scalar values
    _operators_range = frozenset(('$lt', '$lte', '$gt', '$gte'))

    # Operators that an index can answer
    _indexable_operators = frozenset(('$eq', '$in', '$lt', '$lte', '$gt', '$gte'))

    # List of boolean operators, handled by a separate method
    _boolean_operators = frozenset(('$and', '$or', '$nor', '$not'))

    # These classes implement compilation
    # You can override them, if necessary
    _FIELD_EXPRESSION_CLS = FilterFieldExpression
    _BOOLEAN_EXPRESSION_CLS = FilterBooleanExpression

    def input(self, criteria):
        super(MongoFilter, self).input(criteria)
        self.expressions = self._parse_criteria(criteria)

        # Apply force_filter
        if isinstance(self.force_filter, dict):
            # Dict. Parse it, add it (because the results will be ANDed together anyway)
            self.expressions.extend(self._parse_criteria(self.force_filter))
        elif callable(self.force_filter):
            self.extra_predicates.append(self.force_filter)

        return self

    def _parse_criteria(self, criteria):
        """ Parse criteria and return a list of parsed objects.

        :type criteria: dict | None
        :rtype: list[FilterExpressionBase]
        """
        # None
        if not criteria:
            criteria = {}

        # Validation base
        if not isinstance(criteria, dict):
            self._raise('criteria must be one of: null, object')

        # Transform the boolean expression into a list of conditions
        # In the end, those will be ANDed together
        expressions = []

        # Assuming a dict of mixed { field: value }s and  { field: { $op: value } }s
        for key, criteria in criteria.items():
            # Boolean expressions? ($op: value}
            if key in self._boolean_operators:
                boolean_expression = self._parse_boolean_operator(key, criteria)
                if boolean_expression is not None:
                    expressions.append(boolean_expression)
                continue  # nothing else to do here

            if not isinstance(key, str) or not key or key.startswith('$'):
                self._raise('unsupported operator or invalid field name: {!r}', key)
            field_name = key

            # Fake equality
            # The shorthand syntax ({name: "Kevin"}) is transformed into {name: {$eq: Kevin}}
            # so that we don't have to implement special cases.
            # A dict without any operators is a nested document to compare with.
            if not isinstance(criteria, dict) or not any(isinstance(k, str) and k.startswith('$') for k in criteria):
                criteria = {'$eq': criteria}
            elif not all(isinstance(k, str) and k.startswith('$') for k in criteria):
                self._raise('field `{}` mixes operators with field names', field_name)

            # Now we got to go through this criteria object, and apply every operator to the field.
            for operator, value in criteria.items():
                expressions.append(self._parse_field_operator(field_name, operator, value))

        # Done
        return expressions

    def _parse_field_operator(self, field_name, operator, value):
        """ Used in _parse_criteria() to handle { field: { $op: value } }

            :rtype: FilterFieldExpression
        """
        # Validate operator argument
        if operator in self._operators_require_array_value and not is_array(value):
            self._raise('{} argument must be an array for field `{}`', operator, field_name)
        if operator in self._operators_range and kind_of(value) in (Kind.NULL, Kind.MAPPING, Kind.ARRAY):
            raise TypeMismatchError(operator, value, 'a number, a string, a boolean, or a datetime')
        if operator == '$prefix' and not isinstance(value, str):
            raise TypeMismatchError(operator, value, 'a string')
        if operator == '$size' and (not isinstance(value, int) or isinstance(value, bool) or value < 0):
            self._raise('$size argument must be a non-negative integer for field `{}`', field_name)
        if operator == '$regex':
            value = self._compile_regex(field_name, value)

        # Operator lookup
        negated = operator in self._operators_negated
        fan_out = operator not in self._operators_field
        try:
            if negated:
                operator_lambda = self._operators_scalar[self._operators_negated[operator]]
            elif not fan_out:
                operator_lambda = self._operators_field[operator]
            else:
                operator_lambda = self._lookup_operator(operator)
        except KeyError:
            self._raise('unsupported operator "{}" found for field `{}`', operator, field_name)

        return self._FIELD_EXPRESSION_CLS(field_name, operator, operator_lambda, value,
                                          fan_out=fan_out, negated=negated)

    def _compile_regex(self, field_name, value):
        if isinstance(value, re.Pattern):
            return value
        if not isinstance(value, str):
            raise TypeMismatchError('$regex', value, 'a string')
        try:
            return re.compile(value)
        except re.error as e:
            self._raise('invalid $regex for field `{}`: {}', field_name, e)

    def _parse_boolean_operator(self, op, criteria):
        """ Used in _parse_criteria() to handle boolean operators from self._boolean_operators

            Example:
                Input: { $and: [ {}, ... ] }
                -> _parse_boolean_operator('$and', [ {}, ... ])
        """
        if op == '$not':
            # This operator accepts a dict (not a list), which is a query object itself.
            if not isinstance(criteria, dict):
                self._raise('$not argument must be an object')

            # Recurse
            return self._BOOLEAN_EXPRESSION_CLS(op, self._parse_criteria(criteria))
        else:
            # All other operators accept a list: $and, $or, $nor
            if not isinstance(criteria, (list, tuple)):
                self._raise('{} argument must be a list', op)

            # Because the argument of a boolean expression is always a list of other query objects,
            # we have to recurse here and parse it.
            criteria = [self._parse_criteria(s) for s in criteria]

            # Done
            if len(criteria) == 0:
                return None  # Empty criteria: { $or: [] } or something like this that does not make sense
            else:
                return self._BOOLEAN_EXPRESSION_CLS(op, criteria)

    def _lookup_operator(self, operator):
        """ Lookup an operator in `self`, or extra operators

        :raises: KeyError
        """
        return self._operators_scalar.get(operator) or self._extra_scalar_ops[operator]

    def indexable_expressions(self):
        """ Get the top-level expressions that an index can answer

            Only top-level expressions are considered because they are ANDed together:
            the result can be narrowed down by every one of them.

            :rtype: list[FilterFieldExpression]
        """
        return [e for e in self.expressions
                if isinstance(e, FilterFieldExpression) and e.is_indexable]

    def compile_predicate(self, skip_expressions=()):
        """ Compile a single predicate: callable(document) -> bool

        :param skip_expressions: Expressions that won't be included because an index has already answered them
        """
        skip_ids = set(map(id, skip_expressions))
        predicates = [e.compile_predicate()
                      for e in self.expressions
                      if id(e) not in skip_ids]
        predicates.extend(self.extra_predicates)
        return FilterExpressionBase.anded_together(predicates)

    def alter_stream(self, documents):
        # Short-circuit
        if not self.expressions and not self.extra_predicates:
            return documents

        return filter(self.compile_predicate(self.covered_expressions), documents)
