from ..exc import InvalidSpecError


class MongoQueryHandlerBase:
    """ An implementation of a handler from MongoQuery

        Every subclass will handle a single field from the Query object,
        or a single stage from an aggregation pipeline.
    """

    #: Name of the QueryObject section that this object is capable of handling
    query_object_section_name = None

    def __init__(self, collection_name):
        """ Initialize the Query Object section handler with a collection name.

        This method does *not* receive any input data just yet, with the purpose of having an
        object that can be extended with some interesting defaults right at init time.

        :param collection_name: Name of the collection it's being applied to. Used in error messages.
        :type collection_name: str | None

        NOTE: Any arguments that have default values will be treated as handler settings!!
        """
        #: The collection to handle the Query Object for
        self.collection_name = collection_name

        # Should this handler's alter_stream() be skipped by MongoQuery?
        # This is used by MongoQuery when an index has already done the job:
        # e.g. the documents are already sorted by an index, and MongoSort has nothing to do.
        self.skip_this_handler = False

        #: The raw input
        self.input_value = None

    def input_prepare_query_object(self, query_object):
        """ Modify the Query Object before it is processed.

        Sometimes a handler would need to alter it.
        Here's its chance.

        This method is called before any input(), or validation, or anything.

        :param query_object: dict
        """
        return query_object

    def input(self, qo_value):
        """ Get a section of the Query object.

        The purpose of this method is to receive the input, validate it, and store as a public
        property so that external tools may export its value.

        :param qo_value: the value of the Query object field it's handling
        :type qo_value: Any

        :rtype: MongoQueryHandlerBase
        :raises InvalidSpecError
        """
        self.input_value = qo_value  # no copying. Try not to modify it.

        # Make sure that input() can only be used once
        self.input = self.__raise_input_not_reusable

        return self

    def is_input_empty(self):
        """ Test whether the input value was empty """
        return not self.input_value

    def __raise_input_not_reusable(self, *args, **kwargs):
        raise RuntimeError("You can't use the {}.input() method twice. "
                           "Make a new handler instead!"
                           .format(self.__class__.__name__))

    def _raise(self, message, *args):
        """ Raise an InvalidSpecError that mentions the section name """
        raise InvalidSpecError('{}: {}'.format(self.query_object_section_name,
                                               message.format(*args)))

    def alter_stream(self, documents):
        """ Apply the Query Object section this handler is handling to a stream of documents

        :param documents: The documents to process
        :type documents: Iterable[dict]
        :rtype: Iterable[dict]
        """
        raise NotImplementedError()

    def get_final_input_value(self):
        """ Get the final input of the handler """
        return self.input_value
