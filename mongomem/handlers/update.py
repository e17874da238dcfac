"""
### Update Operation

Updates change the fields of a document.

Example:

```python
books.update_one({'title': '1984'}, {'$set': {'price': 9.99}, '$inc': {'stock': -1}})
```

Operators:

* `$set`: `{ $set: { field: value, ... } }`. Sets fields; dotted names create nested objects.
* `$unset`: `{ $unset: { field: '', ... } }`. Removes fields. The values are ignored.
* `$inc`: `{ $inc: { field: number, ... } }`. Increments numeric fields. A missing field is set to the number.

An object without any operators is taken as `$set`:

```python
books.update_one({'title': '1984'}, {'price': 9.99})
```

The `_id` can never be modified.
An update never modifies the document in place: it produces a new document.
"""

from collections import OrderedDict

from .base import MongoQueryHandlerBase
from ..exc import TypeMismatchError
from ..values import copy_document, get_path, is_number, set_path, unset_path, validate_value, MISSING


class MongoUpdate(MongoQueryHandlerBase):
    """ Update a document with $set, $unset, $inc """

    query_object_section_name = 'update'

    #: Supported operators, in the order they're applied
    OPERATORS = ('$set', '$unset', '$inc')

    def __init__(self, collection_name):
        super(MongoUpdate, self).__init__(collection_name)

        # On input
        #: OrderedDict { operator: { field: value } }
        self.operations = None

    def input(self, update):
        super(MongoUpdate, self).input(update)

        if not isinstance(update, dict) or not update:
            self._raise('must be a non-empty object')

        # Plain object: $set
        keys = list(update.keys())
        has_operators = [isinstance(k, str) and k.startswith('$') for k in keys]
        if not any(has_operators):
            update = {'$set': update}
        elif not all(has_operators):
            self._raise('can not mix update operators with field names')

        operations = OrderedDict()
        touched = set()
        for operator, fields in update.items():
            if operator not in self.OPERATORS:
                self._raise('unsupported operator "{}"', operator)
            if not isinstance(fields, dict):
                self._raise('{} argument must be an object', operator)

            for field, value in fields.items():
                if not isinstance(field, str) or not field or field.startswith('$'):
                    self._raise('invalid field name: {!r}', field)
                if field == '_id' or field.startswith('_id.'):
                    self._raise('the _id field can not be modified')
                if field in touched:
                    self._raise('field "{}" is updated twice', field)
                touched.add(field)

                if operator == '$set':
                    validate_value(value)
                elif operator == '$inc' and not is_number(value):
                    raise TypeMismatchError('$inc', value, 'a number')

            operations[operator] = fields

        # Apply in a predictable order
        self.operations = OrderedDict((op, operations[op]) for op in self.OPERATORS if op in operations)
        return self

    def apply(self, document):
        """ Apply the update to a document

            :param document: The stored document. Not modified.
            :return: A new document
            :raises TypeMismatchError: $inc on a field that is not a number
            :raises InvalidSpecError: $set through a field that is not an object
        """
        doc = copy_document(document)

        for field, value in self.operations.get('$set', {}).items():
            set_path(doc, field, copy_document(value))

        for field in self.operations.get('$unset', {}):
            unset_path(doc, field)

        for field, value in self.operations.get('$inc', {}).items():
            current = get_path(doc, field)
            if current is MISSING:
                set_path(doc, field, value)
            elif not is_number(current):
                raise TypeMismatchError('$inc', current, 'a number')
            else:
                set_path(doc, field, current + value)

        return doc

    def alter_stream(self, documents):
        return map(self.apply, documents)

    def get_final_input_value(self):
        return dict(self.operations)
