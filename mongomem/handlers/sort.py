"""
### Sort Operation

The sort operation lets you specify the order in which documents are returned.

An example of a sort operation would look like this:

```python
books.find({}).sort({'author': 1, 'published_year': -1})
```

#### Syntax

* Object syntax.

    Field names mapped to the direction: `1` for ascending, `-1` for descending.
    Python dicts preserve the ordering of keys, so an object can have any number of fields.

    Example:

    ```python
    { 'sort': { 'a': 1, 'b': -1 } }  # -> a ASC, b DESC
    ```

* Array syntax.

    List of field names, optionally suffixed by the sort direction: `-` for descending, `+` for ascending.
    The default is `+`. Pairs are also accepted: `[('a', 1), ('b', -1)]`.

    Example:

    ```python
    { 'sort': [ 'a+', 'b-', 'c' ] }  # -> a ASC, b DESC, c ASC
    ```

* String syntax

    List of fields, with optional `+` / `-`, separated by whitespace.

    Example:

    ```python
    { 'sort': 'a+ b- c' }
    ```

#### Ordering
Values of different kinds are ordered by kind first: null < number < string < object < array < boolean < datetime.
A missing field sorts like a null.
The sort is stable: documents that compare equal keep their insertion order.
"""

from collections import OrderedDict

from .base import MongoQueryHandlerBase
from ..values import directed_sort_key, get_path


class MongoSort(MongoQueryHandlerBase):
    """ MongoDB sorting

        * None: no sorting
        * { a: +1, b: -1 }
        * [ 'a+', 'b-', 'c' ]  - array of strings '<field>[<+|->]'. default direction = +1
        * [ ('a', +1), ('b', -1) ]  - array of pairs
    """

    query_object_section_name = 'sort'

    def __init__(self, collection_name):
        super(MongoSort, self).__init__(collection_name)

        # On input
        #: OrderedDict() of a sort spec: {key: +1|-1}
        self.sort_spec = None

    def _input(self, spec):
        """ Reusable method: fits both input() and merge() """

        # Empty
        if not spec:
            spec = []

        # String syntax
        if isinstance(spec, str):
            # Split by whitespace and convert to a list
            spec = spec.split()

        # List
        if isinstance(spec, (list, tuple)):
            # Strings: convert "field[+-]" into an ordered dict
            if all(isinstance(v, str) for v in spec):
                for v in spec:
                    if not v:
                        self._raise('invalid field name: {!r}', v)
                spec = OrderedDict([
                    [v[:-1], -1 if v[-1] == '-' else +1]
                    if v[-1] in {'+', '-'}
                    else [v, +1]
                    for v in spec
                ])
            # Pairs
            elif all(isinstance(v, (list, tuple)) and len(v) == 2 for v in spec):
                spec = OrderedDict(spec)

        # Dict
        if isinstance(spec, dict):
            spec = OrderedDict(spec)
        else:
            self._raise('must be either a list, a string, or an object; {} provided',
                        type(spec).__name__)

        # Validate field names
        for field in spec:
            if not isinstance(field, str) or not field or field.startswith('$'):
                self._raise('invalid field name: {!r}', field)

        # Validate directions: +1 or -1
        if not all(not isinstance(dir, bool) and dir in {-1, +1} for dir in spec.values()):
            self._raise('direction can be either +1 or -1')

        return spec

    def input(self, sort_spec):
        super(MongoSort, self).input(sort_spec)
        self.sort_spec = self._input(sort_spec)
        return self

    def merge(self, sort_spec):
        self.sort_spec.update(self._input(sort_spec))
        return self

    def is_input_empty(self):
        return not self.sort_spec

    def compile_key(self):
        """ Get a key function for sorted() """
        spec = list(self.sort_spec.items())
        return lambda doc: tuple(directed_sort_key(get_path(doc, field), direction)
                                 for field, direction in spec)

    def alter_stream(self, documents):
        if not self.sort_spec:
            return documents
        return self._sorted(documents, self.compile_key())

    @staticmethod
    def _sorted(documents, key):
        # A generator: nothing is sorted until the first document is requested
        # sorted() is stable: ties keep their input order
        yield from sorted(documents, key=key)

    def get_final_input_value(self):
        return dict(self.sort_spec) if self.sort_spec else None
