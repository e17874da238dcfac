import logging

from . import handlers
from .exc import InvalidSpecError
from .util import MongoQuerySettingsHandler

logger = logging.getLogger(__name__)


class QueryPlan:
    """ The result of query planning: which documents to look at, and how

        The plan is made under the collection lock, and contains everything the query needs,
        so that the rest of the query can run without the lock.
    """

    #: The whole collection is scanned
    COLLSCAN = 'COLLSCAN'
    #: Documents come from indexes
    IXSCAN = 'IXSCAN'

    def __init__(self, documents, used_indexes=(), covered=(), sorted_by=None):
        """ Init a plan

        :param documents: list of stored documents to look at, in order
        :param used_indexes: Names of indexes used to narrow down the documents, or to sort them
        :param covered: Filter expressions that indexes have already answered
        :param sorted_by: The name of the index that has sorted the documents, if any
        """
        self.documents = documents
        self.used_indexes = list(used_indexes)
        self.covered = list(covered)
        self.sorted_by = sorted_by

    @property
    def stage(self):
        return self.IXSCAN if self.used_indexes else self.COLLSCAN

    def __repr__(self):
        return '{}({}, indexes={!r}, sorted_by={!r}, n={})'.format(
            self.__class__.__name__, self.stage, self.used_indexes, self.sorted_by, len(self.documents))


class MongoQuery(object):
    """ MongoDB-style queries over an in-memory collection

        Usage:

            MongoQuery(collection).query(filter={'author': 'Harper Lee'}, sort=['published_year']).end()
    """

    def __init__(self, collection, handler_settings=None):
        """ Init a MongoDB-style query

        :param collection: The collection to query
        :type collection: mongomem.store.Collection
        :param handler_settings: Settings for Query Object handlers.
            These are just plain kwargs names for every handler object's __init__ method.
            Note that you don't have to specify which object receives which kwarg:
            the `MongoQuerySettingsHandler` object does that automatically.

            To disable a handler, give its name mapped to a `False`.
            Example:

                sort_enabled=False

            The list of all settings:
                # project
                    default_projection=None
                    force_exclude=None
                # filter
                    force_filter=None
                    scalar_operators=None
                # limit
                    max_items=None
                # planner
                    use_indexes=True
                # enabled handlers?
                    project_enabled=True
                    filter_enabled=True
                    sort_enabled=True
                    limit_enabled=True
                    count_enabled=True

        :type handler_settings: dict | MongoQuerySettingsDict | None
        """
        self._collection = collection

        # Initialize the settings
        self._handler_settings = MongoQuerySettingsHandler(handler_settings or {})
        self._use_indexes = self._handler_settings.get('use_indexes', True)

        # Get ready: Query object handlers
        self._init_query_object_handlers()

    def query(self, **query_object):
        """ Build a query from an object

        :param project: Projection spec
        :param sort: Sorting spec
        :param filter: Filter criteria
        :param skip: Skip documents
        :param limit: Limit documents
        :param count: Count the number of documents instead of returning them
        :raises InvalidSpecError: unknown Query Object operations provided (extra keys)
        :raises InvalidSpecError: syntax error for any of the Query Object sections
        :raises DisabledError: a section is disabled by the settings
        :rtype: MongoQuery
        """
        # Prepare Query Object
        for handler_name, handler in self._handlers():
            query_object = handler.input_prepare_query_object(query_object)

        # Check if Query Object keys are all right
        invalid_keys = set(query_object.keys()) - self.HANDLER_NAMES
        if invalid_keys:
            raise InvalidSpecError('Unknown Query Object operations: {}'.format(', '.join(sorted(invalid_keys))))

        # Process every field with its method
        # Every handler should be invoked because they may have defaults even when no input was provided
        for handler_name, handler in self._handlers():
            input_value = query_object.get(handler_name, None)

            # Disabled handlers exception
            # But only test that if there actually was any input
            if input_value is not None:
                self._raise_if_handler_is_not_enabled(handler_name)

            handler.input(input_value)

        return self

    def end(self):
        """ Run the query

        The plan (and the snapshot of the documents) is taken under the collection lock;
        the documents are then processed lazily, without holding it.

        :return: An iterator of documents (copies), or an int when counting
        :rtype: Iterator[dict] | int
        """
        return self._execute(self._plan())

    def matching_documents(self):
        """ Get the stored documents that match the filter, sorted and sliced, but not projected

        NOTE: these are the actual stored documents, not copies. For internal use by write operations,
        which call it under the collection lock.

        :rtype: list[dict]
        """
        return list(self._execute(self._plan(), stop_before='project'))

    def explain(self):
        """ Run the query, and describe how it was executed

        :return: {usedIndex, usedIndexes, stage, consideredDocsCount, returnedDocsCount, sortedByIndex}
        :rtype: dict
        """
        plan = self._plan()
        returned = sum(1 for _ in self._execute(plan, stop_before='project'))
        return dict(
            usedIndex=plan.used_indexes[0] if plan.used_indexes else None,
            usedIndexes=list(plan.used_indexes),
            stage=plan.stage,
            consideredDocsCount=len(plan.documents),
            returnedDocsCount=returned,
            sortedByIndex=plan.sorted_by is not None,
        )

    # Extra features

    def result_is_scalar(self):
        """ Test whether the result is a scalar value, like with count """
        return bool(self.handler_count.count)

    def __repr__(self):
        return 'MongoQuery({})'.format(self._collection.name)

    # region Query Object handlers

    _QO_HANDLER_PROJECT = handlers.MongoProject
    _QO_HANDLER_SORT = handlers.MongoSort
    _QO_HANDLER_FILTER = handlers.MongoFilter
    _QO_HANDLER_LIMIT = handlers.MongoLimit
    _QO_HANDLER_COUNT = handlers.MongoCount

    HANDLER_NAMES = frozenset(('project',
                               'sort',
                               'filter',
                               'limit',
                               'count'))

    def _handlers(self):
        """ Get the list of all (handler_name, handler)

            The ordering is the order in which the documents are processed:
            1. 'filter' comes first: fewer documents to sort
            2. 'limit' after 'sort': a page of sorted documents
            3. 'project' after 'limit': only project what's returned
            4. 'count' at the end: it consumes the stream
        """
        return (
            ('filter', self.handler_filter),
            ('sort', self.handler_sort),
            ('limit', self.handler_limit),
            ('project', self.handler_project),
            ('count', self.handler_count),
        )

    # for IDE completion
    handler_project = None  # type: mongomem.handlers.MongoProject
    handler_sort = None  # type: mongomem.handlers.MongoSort
    handler_filter = None  # type: mongomem.handlers.MongoFilter
    handler_limit = None  # type: mongomem.handlers.MongoLimit
    handler_count = None  # type: mongomem.handlers.MongoCount

    def _init_query_object_handlers(self):
        """ Initialize every Query Object handler """
        for name in self.HANDLER_NAMES:
            handler_attr_name = 'handler_' + name
            handler_cls = getattr(self, '_QO_HANDLER_' + name.upper())
            setattr(self, handler_attr_name, self._init_handler(name, handler_cls))

        # Check settings
        self._handler_settings.raise_if_invalid_handler_settings(self)

    def _init_handler(self, handler_name, handler_cls):
        """ Init a handler, and load its settings """
        handler_settings = self._handler_settings.get_settings(handler_name, handler_cls)
        return handler_cls(self._collection.name, **handler_settings)

    # endregion

    # region Planning

    def _plan(self):
        """ Decide which documents to look at, using indexes when possible

        Captures the documents under the collection lock.
        Indexes give sequence numbers of the documents: see `Collection._documents`.

        :rtype: QueryPlan
        """
        collection = self._collection
        with collection.lock:
            used_indexes, covered, candidates = [], [], None
            sorted_by, ordered = None, None

            if self._use_indexes:
                candidates, used_indexes, covered = self._plan_filter_indexes()
                sorted_by, ordered = self._plan_sort_index()
                if sorted_by is not None and sorted_by not in used_indexes:
                    used_indexes.append(sorted_by)

            # Documents, in order
            if ordered is not None:
                # Sorted by an index; narrowed down by other indexes
                if candidates is not None:
                    ordered = [seq for seq in ordered if seq in candidates]
                documents = [collection._documents[seq] for seq in ordered]
            elif candidates is not None:
                # Natural order
                documents = [collection._documents[seq] for seq in sorted(candidates)]
            else:
                documents = list(collection._documents.values())

        plan = QueryPlan(documents, used_indexes, covered, sorted_by)
        logger.debug('Query plan for %r: %r', self, plan)
        return plan

    def _plan_filter_indexes(self):
        """ Find documents using indexes

        Only top-level expressions are used: they're ANDed together, so every one of them narrows the result down.

        :return: (set of sequence numbers | None, used index names, covered expressions)
        """
        indexes = self._collection.indexes
        expressions = self.handler_filter.indexable_expressions()
        if not expressions:
            return None, [], []

        seq_sets, used, covered = [], [], []

        # Equalities on the leading fields of a compound index: one prefix lookup
        equalities = {}
        for e in expressions:
            if e.operator_str == '$eq':
                equalities.setdefault(e.field_name, e)
        index, n = indexes.index_for_equalities(equalities.keys())
        if index is not None:
            prefix = [equalities[field] for field in index.fields[:n]]
            seq_sets.append(set(index.lookup_seqs(*[e.value for e in prefix])))
            used.append(index.name)
            covered.extend(prefix)

        # Every other expression: a lookup, or a range scan, on the leading field of some index
        covered_ids = set(map(id, covered))
        for e in expressions:
            if id(e) in covered_ids:
                continue
            index = indexes.index_for_field(e.field_name)
            if index is None:
                continue

            if e.operator_str == '$eq':
                seqs = index.lookup_seqs(e.value)
            elif e.operator_str == '$in':
                seqs = [seq for v in e.value for seq in index.lookup_seqs(v)]
            else:
                seqs = index.range_scan_seqs(e.operator_str, e.value)

            seq_sets.append(set(seqs))
            if index.name not in used:
                used.append(index.name)
            covered.append(e)

        if not seq_sets:
            return None, [], []
        return set.intersection(*seq_sets), used, covered

    def _plan_sort_index(self):
        """ Find an index that provides the sort order

        :return: (index name, list of sequence numbers in order), or (None, None)
        """
        sort_spec = self.handler_sort.sort_spec
        if not sort_spec:
            return None, None

        index, direction = self._collection.indexes.index_for_sort(sort_spec)
        if index is None:
            return None, None
        return index.name, index.sorted_scan_seqs(reverse=(direction == -1))

    # endregion

    # region Execution

    def _execute(self, plan, stop_before=None):
        """ Process the documents from the plan with every handler

        :param plan: The plan
        :param stop_before: The name of the handler to stop at
        """
        # The filter does not have to check what indexes have already answered
        self.handler_filter.covered_expressions = plan.covered
        # The sort does not have to sort what an index has already sorted
        self.handler_sort.skip_this_handler = plan.sorted_by is not None

        stream = iter(plan.documents)
        for handler_name, handler in self._handlers():
            if handler_name == stop_before:
                break
            if handler.skip_this_handler:
                continue
            if handler_name == 'count' and not handler.count:
                continue
            stream = handler.alter_stream(stream)
        return stream

    def _raise_if_handler_is_not_enabled(self, handler_name):
        """ Raise an error if a handler is not enabled """
        self._handler_settings.raise_if_not_handler_enabled(self._collection.name, handler_name)

    # endregion
