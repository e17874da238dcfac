"""
### Accumulators

Sometimes you wouldn't need the documents themselves, but rather some statistics on them: the smallest value,
the largest value, the average value, the sum total of all values.

This is what accumulators do: within a `$group` stage, they fold the documents of every group into a single value.

Example:
```python
books.aggregate([
    {'$group': {
        '_id': '$genre',
        # The cheapest and the most expensive
        'min_price': {'$min': '$price'},
        'max_price': {'$max': '$price'},
        # $sum of 1 for every book produces the total number of books
        'n_books': {'$sum': 1},
        'avg_price': {'$avg': '$price'},
    }}
])
```

#### Syntax

    { computed-field-name: { $accumulator: <expression> } }

The *expression* is any expression: see `mongomem.expressions`.
Most of the time, it's just a field reference: `'$price'`, or a constant: `1`.

Accumulators:

* `{ $sum: expression }` - sum of values. Values that are not numbers are ignored.
* `{ $avg: expression }` - average value. Values that are not numbers are ignored. `None` when there are no numbers.
* `{ $min: expression }` - smallest value. `None` and missing values are ignored.
* `{ $max: expression }` - largest value. `None` and missing values are ignored.
* `{ $count: {} }` - the number of documents
* `{ $first: expression }` - the value from the first document of the group
* `{ $last: expression }` - the value from the last document of the group
* `{ $push: expression }` - a list of values from every document of the group
"""

from ..exc import InvalidSpecError
from ..expressions import compile_expression
from ..values import MISSING, is_number, sort_key


# region Accumulator Classes

class AccumulatorBase:
    """ Represents a computed field with a label

        Accumulators are stateless: the state is kept by the caller.
        It's initialized with initial(), updated with step(), and converted into the value with result().
    """

    __slots__ = ('label', 'operator', 'expression')

    def __init__(self, label, operator, expression):
        """ Init an accumulator

        :param label: The name of the field to store the result into
        :param operator: The operator name: '$sum', ...
        :param expression: The expression to accumulate: callable(document) -> value
        """
        self.label = label
        self.operator = operator
        self.expression = expression

    def __repr__(self):
        return '{}: {}'.format(self.label, self.operator)

    def initial(self):
        """ The initial state """
        raise NotImplementedError()

    def step(self, state, document):
        """ Add a document to the state; return the new state """
        raise NotImplementedError()

    def result(self, state):
        """ Convert the state into the resulting value """
        return state


class AccumulatorSum(AccumulatorBase):
    """ { total: { $sum: '$price' } } """

    __slots__ = ()

    def initial(self):
        return 0

    def step(self, state, document):
        value = self.expression(document)
        return state + value if is_number(value) else state


class AccumulatorAvg(AccumulatorBase):
    """ { avg_price: { $avg: '$price' } } """

    __slots__ = ()

    def initial(self):
        return (0, 0)  # (sum, count)

    def step(self, state, document):
        value = self.expression(document)
        if not is_number(value):
            return state
        total, n = state
        return (total + value, n + 1)

    def result(self, state):
        total, n = state
        return total / n if n else None


class AccumulatorMin(AccumulatorBase):
    """ { cheapest: { $min: '$price' } } """

    __slots__ = ()

    def initial(self):
        return MISSING

    def better(self, value, current):
        return sort_key(value) < sort_key(current)

    def step(self, state, document):
        value = self.expression(document)
        if value is None or value is MISSING:
            return state
        if state is MISSING or self.better(value, state):
            return value
        return state

    def result(self, state):
        return None if state is MISSING else state


class AccumulatorMax(AccumulatorMin):
    """ { most_expensive: { $max: '$price' } } """

    __slots__ = ()

    def better(self, value, current):
        return sort_key(value) > sort_key(current)


class AccumulatorCount(AccumulatorBase):
    """ { n: { $count: {} } } """

    __slots__ = ()

    def initial(self):
        return 0

    def step(self, state, document):
        return state + 1


class AccumulatorFirst(AccumulatorBase):
    """ { title: { $first: '$title' } } """

    __slots__ = ()

    def initial(self):
        return MISSING

    def step(self, state, document):
        if state is MISSING:
            value = self.expression(document)
            return None if value is MISSING else value
        return state

    def result(self, state):
        return None if state is MISSING else state


class AccumulatorLast(AccumulatorBase):
    """ { title: { $last: '$title' } } """

    __slots__ = ()

    def initial(self):
        return None

    def step(self, state, document):
        value = self.expression(document)
        return None if value is MISSING else value


class AccumulatorPush(AccumulatorBase):
    """ { titles: { $push: '$title' } } """

    __slots__ = ()

    def initial(self):
        return []

    def step(self, state, document):
        value = self.expression(document)
        if value is not MISSING:
            state.append(value)
        return state

# endregion


#: Accumulator classes, by operator name
ACCUMULATORS = {
    '$sum': AccumulatorSum,
    '$avg': AccumulatorAvg,
    '$min': AccumulatorMin,
    '$max': AccumulatorMax,
    '$count': AccumulatorCount,
    '$first': AccumulatorFirst,
    '$last': AccumulatorLast,
    '$push': AccumulatorPush,
}


def parse_accumulator(label, spec, section_name='$group'):
    """ Parse { $operator: expression } into an accumulator

        :param label: The name of the computed field
        :param spec: The accumulator object
        :param section_name: For error messages
        :rtype: AccumulatorBase
        :raises InvalidSpecError
    """
    if not isinstance(spec, dict) or len(spec) != 1:
        raise InvalidSpecError('{}: field "{}" must be an accumulator object with exactly one key: '
                               '{{ $operator: expression }}'.format(section_name, label))

    operator, expression = next(iter(spec.items()))
    try:
        accumulator_cls = ACCUMULATORS[operator]
    except KeyError:
        raise InvalidSpecError('{}: unknown accumulator "{}" for field "{}"'.format(section_name, operator, label))

    if operator == '$count':
        if expression != {}:
            raise InvalidSpecError('{}: $count takes no arguments: {{ $count: {{}} }}'.format(section_name))
        return accumulator_cls(label, operator, None)

    return accumulator_cls(label, operator, compile_expression(expression))
