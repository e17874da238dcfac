"""
### Count Operation

Simply, return the number of documents, without returning the documents themselves. Just a number. That's it.

Example:

```python
books.count_documents({'author': 'A'})
```

Which is the same as the Query Object:

```python
{ 'filter': {'author': 'A'}, 'count': 1 }
```

The `1` is the *on* switch. Replace it with `0` to stop counting.
Skip and limit are respected: the count is the number of documents that the same query would have returned.
"""

from .base import MongoQueryHandlerBase


class MongoCount(MongoQueryHandlerBase):
    """ MongoDB count query

        Just give it:
        * count=True
    """

    query_object_section_name = 'count'

    def __init__(self, collection_name):
        super(MongoCount, self).__init__(collection_name)

        # On input
        self.count = None

    def input_prepare_query_object(self, query_object):
        # When we count, we don't care about certain things
        if query_object.get('count', False):
            # Performance: do not sort when counting
            query_object.pop('sort', None)
            # We don't care about projections either
            query_object.pop('project', None)
            # Finally, when we count, we have to remove `max_items` setting from MongoLimit.
            # Only MongoLimit can do it, and it will do it for us.
            # See: MongoLimit.input_prepare_query_object
        return query_object

    def input(self, count=None):
        super(MongoCount, self).input(count)
        if not isinstance(count, (int, bool, NoneType)):
            self._raise('must be either true or false. Or at least a 1, or a 0')

        self.count = count
        return self

    def alter_stream(self, documents):
        """ Consume the stream and give the number of documents """
        return sum(1 for _ in documents)


class MongoCountStage(MongoQueryHandlerBase):
    """ The `$count` pipeline stage

        { '$count': 'total' } -> { 'total': <number of documents> }

        When there are no documents, no document is emitted at all.
    """

    query_object_section_name = '$count'

    def __init__(self, collection_name):
        super(MongoCountStage, self).__init__(collection_name)

        # On input
        self.label = None

    def input(self, label):
        super(MongoCountStage, self).input(label)
        if not isinstance(label, str) or not label:
            self._raise('must be a non-empty string')
        if label.startswith('$') or '.' in label:
            self._raise('the name can not start with "$" or contain "."; {!r} provided', label)

        self.label = label
        return self

    def alter_stream(self, documents):
        n = sum(1 for _ in documents)
        if n:
            yield {self.label: n}


NoneType = type(None)
