"""
### Group Operation

The `$group` pipeline stage collects documents into groups by a key, and computes statistics for every group
using accumulators (see `mongomem.handlers.aggregate`).

Better start with a few examples.

#### Example #1: count the number of books of every genre

```python
books.aggregate([
    {'$group': {'_id': '$genre', 'count': {'$sum': 1}}},
])
```

The result would be something like:

    {'_id': 'Fiction', 'count': 25}
    {'_id': 'Science', 'count': 20}
    ...

#### Example #2: calculate the average price per genre

```python
books.aggregate([
    {'$group': {'_id': '$genre', 'avg_price': {'$avg': '$price'}}},
])
```

#### Syntax

    { '$group': { '_id': <key expression>, computed-field-name: { $accumulator: <expression> }, ... } }

The key is any expression: a field reference (`'$genre'`), an object of field references
(`{'author': '$author', 'genre': '$genre'}`), or a constant (`None`: everything is a single group).

Documents which keys are equal end up in the same group: `1` and `1.0` are the same key, `True` and `1` are not.
A missing key is the same as a `None` key.

Groups are emitted in the order their keys were first seen.
"""

from collections import OrderedDict

from .base import MongoQueryHandlerBase
from .aggregate import parse_accumulator
from ..expressions import compile_expression
from ..values import MISSING, sort_key


class MongoGroup(MongoQueryHandlerBase):
    """ MongoDB-style grouping

        Syntax:

            { _id: key-expression, label: { $accumulator: expression }, ... }
    """

    query_object_section_name = '$group'

    def __init__(self, collection_name):
        super(MongoGroup, self).__init__(collection_name)

        # On input
        #: The group key: callable(document) -> value
        self.key_expression = None
        #: list[AccumulatorBase]
        self.accumulators = None

    def input(self, group_spec):
        super(MongoGroup, self).input(group_spec)

        if not isinstance(group_spec, dict):
            self._raise('must be an object; {} provided', type(group_spec).__name__)
        if '_id' not in group_spec:
            self._raise('a group specification must include an _id')

        self.key_expression = compile_expression(group_spec['_id'])

        self.accumulators = []
        for label, spec in group_spec.items():
            if label == '_id':
                continue
            if not isinstance(label, str) or not label or label.startswith('$') or '.' in label:
                self._raise('invalid field name: {!r}', label)
            self.accumulators.append(parse_accumulator(label, spec, self.query_object_section_name))

        return self

    def alter_stream(self, documents):
        # { sort_key(key): (key, [state, ...]) }
        groups = OrderedDict()

        for doc in documents:
            key = self.key_expression(doc)
            if key is MISSING:
                key = None

            gkey = sort_key(key)
            group = groups.get(gkey)
            if group is None:
                group = groups[gkey] = (key, [a.initial() for a in self.accumulators])

            states = group[1]
            for i, accumulator in enumerate(self.accumulators):
                states[i] = accumulator.step(states[i], doc)

        for key, states in groups.values():
            result = {'_id': key}
            for accumulator, state in zip(self.accumulators, states):
                result[accumulator.label] = accumulator.result(state)
            yield result
