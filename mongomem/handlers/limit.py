"""
### Slice Operation

The Slice operation consists of two optional parts:

* `limit` would limit the number of documents returned
* `skip` would shift the "window" a number of documents

Together, these two elements implement pagination.

Example:

```python
books.find({}).sort({'_id': 1}).skip(20).limit(10)  # 10 books per page, we're on the third page
```

Values: can be a number, or a `None`.
Skip is applied first, then the limit.
"""

from itertools import islice

from .base import MongoQueryHandlerBase


class MongoLimit(MongoQueryHandlerBase):
    """ MongoDB limits and offsets

        Handles two keys:
        * 'limit': None, or int: the maximum number of documents
        * 'skip': None, or int: the number of documents to skip
    """

    query_object_section_name = 'limit'

    def __init__(self, collection_name, max_items=None):
        """ Init a limit

        :param collection_name: Collection to work with
        :param max_items: The maximum number of items that can be loaded with this query.
            The user can never go any higher than that, and this value is forced onto every query.
        """
        super(MongoLimit, self).__init__(collection_name)

        # Config
        self.max_items = max_items
        assert self.max_items is None or self.max_items > 0

        # On input
        self.skip = None
        self.limit = None

    def input_prepare_query_object(self, query_object):
        """ Alter Query Object

        Unlike other handlers, this one receives 2 values: 'skip' and 'limit'.
        MongoQuery only supports one key per handler.
        Solution: pack them as a tuple
        """
        if 'skip' in query_object or 'limit' in query_object:
            query_object['limit'] = (query_object.pop('skip', None),
                                     query_object.pop('limit', None))
            if query_object['limit'] == (None, None):
                query_object.pop('limit')  # remove it if it's actually empty

        # When there is a 'count', we have to disable self.max_items
        # We can safely just alter ourselves, because we're a copy anyway
        if query_object.get('count', False):
            self.max_items = None

        return query_object

    def input(self, skip=None, limit=None):
        # MongoQuery actually gives us a tuple (skip, limit)
        if isinstance(skip, tuple):
            skip, limit = skip

        super(MongoLimit, self).input((skip, limit))

        # Validate
        if isinstance(skip, bool) or not isinstance(skip, (int, NoneType)):
            self._raise('skip must be either an integer, or null')
        if isinstance(limit, bool) or not isinstance(limit, (int, NoneType)):
            self._raise('limit must be either an integer, or null')

        # Clamp
        skip = None if skip is None or skip <= 0 else skip
        limit = None if limit is None or limit <= 0 else limit

        # Max limit
        if self.max_items:
            limit = min(self.max_items, limit or self.max_items)

        self.skip = skip
        self.limit = limit
        return self

    @property
    def has_limit(self):
        """ Check whether there's a limit on this handler """
        return self.limit is not None or self.skip is not None

    def alter_stream(self, documents):
        if not self.has_limit:
            return documents
        start = self.skip or 0
        stop = start + self.limit if self.limit is not None else None
        return islice(documents, start, stop)

    def get_final_input_value(self):
        return dict(skip=self.skip, limit=self.limit)

NoneType = type(None)
