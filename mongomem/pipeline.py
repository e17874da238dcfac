"""
### Aggregation Pipeline

A pipeline is a list of stages. Documents flow through the stages in order:
every stage receives the documents produced by the previous one.

```python
books.aggregate([
    {'$match': {'in_stock': True}},
    {'$group': {'_id': '$genre', 'avg_price': {'$avg': '$price'}}},
    {'$sort': {'avg_price': -1}},
    {'$limit': 3},
])
```

Every stage is an object with exactly one key, the stage name:

* `$match`: filter the documents. Same syntax as `find()`. See `mongomem.handlers.filter`.
    When the pipeline starts with a `$match`, it can use indexes.
* `$project`: choose fields, compute new ones. See `mongomem.handlers.project.MongoComputedProject`.
* `$group`: group documents, compute statistics. See `mongomem.handlers.group`.
* `$sort`: sort documents. See `mongomem.handlers.sort`.
* `$skip`: skip the first N documents.
* `$limit`: pass on at most N documents.
* `$count`: replace all documents with one: `{name: <number of documents>}`.

Pipelines are lazy: the documents are processed as the result is iterated.
"""

import logging

from . import handlers
from .exc import InvalidSpecError
from .query import MongoQuery

logger = logging.getLogger(__name__)


class MongoPipeline(object):
    """ Aggregation pipeline over a collection

        Usage:

            MongoPipeline(collection).input([ {'$match': ...}, {'$group': ...} ]).end()
    """

    def __init__(self, collection, handler_settings=None):
        """ Init a pipeline

        :param collection: The collection to aggregate
        :type collection: mongomem.store.Collection
        :param handler_settings: Settings for the MongoQuery that runs the leading `$match` stage
        """
        self._collection = collection
        self._handler_settings = handler_settings

        # On input
        #: The leading `$match` criteria, if any. It's given to MongoQuery.
        self.leading_match = None
        #: list of (stage name, handler)
        self.stages = None

    def __repr__(self):
        return 'MongoPipeline({})'.format(self._collection.name)

    # Stage handlers.
    # Override them to customize how stages are handled.
    _STAGE_HANDLERS = {
        '$match': handlers.MongoFilter,
        '$project': handlers.MongoComputedProject,
        '$group': handlers.MongoGroup,
        '$sort': handlers.MongoSort,
        '$count': handlers.MongoCountStage,
    }

    def input(self, pipeline):
        """ Parse and validate the pipeline

        :param pipeline: list of stages
        :rtype: MongoPipeline
        :raises InvalidSpecError: invalid stage
        """
        if not isinstance(pipeline, (list, tuple)):
            raise InvalidSpecError('Pipeline must be a list of stages; {} provided'.format(type(pipeline).__name__))

        stages = []
        for i, stage in enumerate(pipeline):
            if not isinstance(stage, dict) or len(stage) != 1:
                raise InvalidSpecError('Pipeline stage #{} must be an object with exactly one key: {!r}'.format(i, stage))
            (name, spec), = stage.items()

            # Leading $match: run it through MongoQuery, so that it can use indexes
            if i == 0 and name == '$match':
                handlers.MongoFilter(self._collection.name).input(spec)  # validate
                self.leading_match = spec
                continue

            stages.append((name, self._init_stage_handler(name, spec)))

        self.stages = stages
        return self

    def _init_stage_handler(self, name, spec):
        """ Init a handler for a stage """
        collection_name = self._collection.name

        if name in ('$skip', '$limit'):
            if isinstance(spec, bool) or not isinstance(spec, int):
                raise InvalidSpecError('{} must be an integer; {!r} provided'.format(name, spec))
            if name == '$limit' and spec <= 0:
                raise InvalidSpecError('$limit must be positive; {!r} provided'.format(spec))
            if name == '$skip' and spec < 0:
                raise InvalidSpecError('$skip must be non-negative; {!r} provided'.format(spec))
            skip, limit = (spec, None) if name == '$skip' else (None, spec)
            return handlers.MongoLimit(collection_name).input(skip, limit)

        if name == '$sort' and not spec:
            raise InvalidSpecError('$sort requires a non-empty sort specification')

        try:
            handler_cls = self._STAGE_HANDLERS[name]
        except KeyError:
            raise InvalidSpecError('Unsupported pipeline stage: {!r}'.format(name))
        return handler_cls(collection_name).input(spec)

    def end(self):
        """ Run the pipeline

        The documents are captured right away; the stages run as the result is iterated.

        :rtype: Iterator[dict]
        """
        if self.leading_match is not None:
            stream = MongoQuery(self._collection, self._handler_settings).query(filter=self.leading_match).end()
        else:
            stream = iter(self._collection.scan())

        logger.debug('Pipeline %r: %s', self, [name for name, handler in self.stages])
        for name, handler in self.stages:
            stream = handler.alter_stream(stream)
        return stream
