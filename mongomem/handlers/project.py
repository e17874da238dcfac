"""
### Project Operation

In MongoDB terminology, *projection* is the process of selection a subset of fields from a document.

Your documents have many fields, but you do not always need them all.
The `project` operation lets you list the fields that you want to have in the result.
You do this by either listing the fields that you need (called *include mode*), or listing the fields that you
*do not* need (called *exclude mode*).

An example of a projection would look like this:

```python
books.find({}, {'title': 1, 'author': 1, 'price': 1, '_id': 0})
```

#### Syntax

The Project operation supports the following syntaxes:

* Array syntax.

    Provide an array of field names to be included.
    All the rest will be excluded.

    Example:

    ```python
    { 'project': ['title', 'author'] }
    ```

* String syntax

    Give a list of field names, separated by whitespace.

    Example:

    ```python
    { 'project': 'title author' }
    ```

* Object syntax.

    Provide an object of field names mapped to either a `1` (include) or a `0` (exclude).

    Examples:

    ```python
    { 'project': { 'a': 1, 'b': 1 } } # Include specific fields. All other fields are excluded
    { 'project': { 'a': 0, 'b': 0 } }  # Exclude specific fields. All other fields are included
    ```

    Note that you can't intermix the two: you either use all `1`s to specify the fields you want included,
    or use all `0`s to specify the fields you want excluded.

#### The `_id` field
When a projection is given, the `_id` is only returned when requested explicitly: `{'title': 1, '_id': 1}`.
It's the only field that can be used with both `1`s and `0`s.
Without a projection, documents are returned whole, with their `_id`. An empty projection, `{}` or `[]`,
is the same as no projection at all.

#### Nested fields
Dotted names reach into nested objects: `{'publisher.name': 1}` gives `{'publisher': {'name': ...}}`.

They reach into arrays of objects as well: `{'authors.name': 1}` over `{'authors': [{'name': 'a', 'age': 30}]}`
gives `{'authors': [{'name': 'a'}]}`. Array elements that are not objects are dropped.
"""

from .base import MongoQueryHandlerBase
from ..exc import InvalidSpecError
from ..expressions import compile_expression
from ..values import MISSING, copy_document, is_array, set_path, unset_path


def _include_path(src, dst, parts):
    """ Copy the value at `parts` from `src` to `dst`, creating intermediate objects """
    head, rest = parts[0], parts[1:]
    if not isinstance(src, dict) or head not in src:
        return

    value = src[head]
    if not rest:
        dst[head] = copy_document(value)
    elif isinstance(value, dict):
        sub = dst.get(head)
        if not isinstance(sub, dict):
            sub = dst[head] = {}
        _include_path(value, sub, rest)
    elif is_array(value):
        # One projected object per object element. Other paths into the same array fill the same objects.
        items = [item for item in value if isinstance(item, dict)]
        subs = dst.get(head)
        if not isinstance(subs, list):
            subs = dst[head] = [{} for item in items]
        for item, sub in zip(items, subs):
            _include_path(item, sub, rest)


def _parse_field_list(projection):
    """ Convert the string and the array syntaxes into a dict """
    if isinstance(projection, str):
        projection = projection.split()
    if isinstance(projection, (list, tuple)):
        if not all(isinstance(name, str) for name in projection):
            raise InvalidSpecError('project: array syntax requires a list of field names')
        projection = dict.fromkeys(projection, 1)
    return projection


def _check_path_collisions(section, names):
    """ Make sure that no name is a prefix of another: 'a' and 'a.b' """
    names = sorted(names)
    for a, b in zip(names, names[1:]):
        if b.startswith(a + '.'):
            raise InvalidSpecError('{}: path collision between "{}" and "{}"'.format(section, a, b))


class MongoProject(MongoQueryHandlerBase):
    """ MongoDB projection operator.

        This operator is essentially the one that enables you to choose which fields to return.

        Syntax in Python:

        * None: use default (include all)
        * { a: 1, b: 1 } - include only the given fields; exclude all the rest
        * { a: 0, b: 0 } - exclude the given fields; include all the rest
        * [ a, b, c ] - include only the given fields

        Other useful methods:
        * pluck() will apply the projection to a single document
    """

    query_object_section_name = 'project'

    #: No projection: documents are returned whole
    MODE_NONE = None
    #: Include only the listed fields
    MODE_INCLUDE = 1
    #: Exclude the listed fields
    MODE_EXCLUDE = 0

    def __init__(self, collection_name, default_projection=None, force_exclude=None):
        """ Init projection

        :param collection_name: Collection to work with
        :param default_projection: The default projection to use in the absence of any value.
            Note: a `None`, or an empty value (empty list, dict), will default to "include all fields".
        :param force_exclude: A list of field names to exclude from the output always
        """
        super(MongoProject, self).__init__(collection_name)

        # Settings
        self.default_projection = default_projection
        self.force_exclude = frozenset(force_exclude or ())

        # On input
        #: Projection mode: MODE_NONE, MODE_INCLUDE, MODE_EXCLUDE
        self.mode = self.MODE_NONE
        #: The projection dict, without the `_id`
        self.projection = {}
        #: Is the `_id` explicitly included?
        self.include_id = True

    def input(self, projection):
        super(MongoProject, self).input(projection)

        # Use the default
        if projection is None:
            projection = self.default_projection

        # Syntax
        if projection is not None:
            projection = _parse_field_list(projection)
            if not isinstance(projection, dict):
                self._raise('must be either a list, a string, or an object; {} provided', type(projection).__name__)

        # No projection, or an empty one: include everything
        if not projection:
            self.mode = self.MODE_NONE
            self.projection = {}
            self.include_id = True
            return self

        # Validate
        for name, value in projection.items():
            if not isinstance(name, str) or not name or name.startswith('$'):
                self._raise('invalid field name: {!r}', name)
            if isinstance(value, bool):
                value = int(value)
            if value not in (0, 1):
                self._raise('field "{}" must be mapped to either 1 or 0, got {!r}', name, value)

        # `_id` is special: it can be mixed in with any mode
        projection = {name: int(value) for name, value in projection.items()}
        self.include_id = bool(projection.pop('_id', 0))

        # Mode
        values = set(projection.values())
        if len(values) > 1:
            self._raise('can not mix includes and excludes: {!r}', projection)
        elif values == {0}:
            self.mode = self.MODE_EXCLUDE
        elif values == {1}:
            self.mode = self.MODE_INCLUDE
        else:
            # Just the `_id`: {_id: 1} includes only the `_id`, {_id: 0} excludes only the `_id`
            self.mode = self.MODE_INCLUDE if self.include_id else self.MODE_EXCLUDE

        _check_path_collisions(self.query_object_section_name, projection.keys())
        self.projection = projection
        return self

    def pluck(self, document):
        """ Apply the projection to a document

            :return: A new document. The original one is never modified.
            :rtype: dict
        """
        if self.mode == self.MODE_INCLUDE:
            result = {}
            if self.include_id and '_id' in document:
                result['_id'] = copy_document(document['_id'])
            for name in self.projection:
                _include_path(document, result, name.split('.'))
        else:
            result = copy_document(document)
            for name in self.projection:
                unset_path(result, name)
            if not self.include_id:
                result.pop('_id', None)

        for name in self.force_exclude:
            unset_path(result, name)
        return result

    def alter_stream(self, documents):
        return map(self.pluck, documents)

    def get_final_input_value(self):
        if self.mode == self.MODE_NONE:
            return None
        projection = dict(self.projection)
        if self.include_id:
            projection['_id'] = 1
        return projection


class MongoComputedProject(MongoQueryHandlerBase):
    """ The `$project` stage of an aggregation pipeline

        Unlike MongoProject, it can compute new fields:

            { '$project': {
                'title': 1,
                'decade': { '$subtract': ['$published_year', { '$mod': ['$published_year', 10] }] },
            }}

        * `1` or `True`: include the field
        * `0` or `False`: exclude the field
        * anything else: an expression that computes the value. See `mongomem.expressions`.

        The `_id` is included unless excluded explicitly with `_id: 0`.
        Computed fields can't be combined with exclusions (except for `_id`).
        The stage never filters documents: one document in, one document out.
    """

    query_object_section_name = '$project'

    def __init__(self, collection_name):
        super(MongoComputedProject, self).__init__(collection_name)

        # On input
        self.include_id = True
        self.exclude_mode = False
        #: list of (field name, compiled expression | None). None means "copy the field"
        self.fields = []

    def input(self, spec):
        super(MongoComputedProject, self).input(spec)

        if not isinstance(spec, dict) or not spec:
            self._raise('specification must be a non-empty object')

        excluded, included = [], []
        for name, value in spec.items():
            if not isinstance(name, str) or not name or name.startswith('$'):
                self._raise('invalid field name: {!r}', name)

            if name == '_id' and value in (0, False) and not isinstance(value, str):
                self.include_id = False
            elif isinstance(value, (bool, int)) and value in (0, 1):
                (included if value else excluded).append(name)
                if value:
                    self.fields.append((name, None))
            else:
                included.append(name)
                self.fields.append((name, compile_expression(value)))

        if excluded and included:
            self._raise('can not mix exclusions with inclusions or computed fields')
        self.exclude_mode = bool(excluded) or not included
        if self.exclude_mode:
            self.fields = [(name, None) for name in excluded]

        _check_path_collisions(self.query_object_section_name, [name for name, expr in self.fields])
        return self

    def pluck(self, document):
        """ Project a single document """
        if self.exclude_mode:
            result = copy_document(document)
            for name, _ in self.fields:
                unset_path(result, name)
            if not self.include_id:
                result.pop('_id', None)
            return result

        result = {}
        if self.include_id and '_id' in document:
            result['_id'] = copy_document(document['_id'])
        for name, expression in self.fields:
            if name == '_id' and expression is None:
                continue  # already there
            if expression is None:
                _include_path(document, result, name.split('.'))
            else:
                value = expression(document)
                if value is not MISSING:
                    set_path(result, name, value)
        return result

    def alter_stream(self, documents):
        return map(self.pluck, documents)
