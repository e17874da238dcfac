from .inspect import pluck_kwargs_from
from ..exc import DisabledError


class MongoQuerySettingsHandler:
    """ Settings keeper for MongoQuery

        This is essentially a helper which will feed the correct kwargs to every class.

        MongoQuery handlers receive settings as kwargs to their __init__() methods,
        and those kwargs have unique names.

        This class will collect all settings as a single, flat array,
        and give each handler only the settings it wants.

        This approach will let us use a flat configuration dict.
    """

    #: Settings that are not handler kwargs, but are still valid
    OTHER_KNOWN_KEYS = frozenset(('use_indexes',))

    def __init__(self, settings: dict):
        """ Store the settings for every handler

            :param settings: dict of handler kwargs
        """
        assert isinstance(settings, dict)

        #: Settings dict
        self._settings = settings  # we don't make a copy, because we don't modify it

        #: Handler names
        self._handler_names = set()

        #: kwarg names for every handler: dict[handler] = set()
        self._handler_kwargs_names = {}

        #: all kwargs names (to identify invalid ones)
        self._all_known_kwargs_names = set()

        #: disabled handler names
        self._disabled_handlers = set()

    def get(self, key, default=None):
        """ Get a setting that is not a handler kwarg: e.g. `use_indexes` """
        return self._settings.get(key, default)

    def get_settings(self, handler_name: str, handler_cls: type) -> dict:
        """ Get settings for the given handler

            Because we do not know in advance how many handlers we will have, what their names will be,
            and what classes implement them, we have to handle them one by one.

            Every time a class is given us, we analyze its __init__() method in order to know its kwargs
            and its default values.
            Then, we take the matching keys from the settings dict, we take defaults from the argument defaults,
            and make it all into `kwargs` that will be given to the class.

            In addition to that, if the settings contain `<handler_name>_enabled=False`, then it means it's disabled.
            is_handler_enabled() method will later tell that to MongoQuery.
        """
        # See if it's actually disabled
        if not self._settings.get('{}_enabled'.format(handler_name), True):
            self._disabled_handlers.add(handler_name)

        # Analyze a function, pluck the arguments that it needs
        kwargs = pluck_kwargs_from(self._settings, for_func=handler_cls.__init__)
        kwargs_names = kwargs.keys()  # always all of them

        # Store the data that we'll need
        self._handler_kwargs_names[handler_name] = set(kwargs_names)
        self._handler_names.add(handler_name)
        self._all_known_kwargs_names.update(kwargs_names)

        return kwargs  # for the handler's __init__()

    def is_handler_enabled(self, handler_name: str) -> bool:
        """ Test if the handler is enabled in the configuration """
        return handler_name not in self._disabled_handlers

    def raise_if_not_handler_enabled(self, collection_name: str, handler_name: str):
        """ Raise an error if the handler is not enabled """
        if not self.is_handler_enabled(handler_name):
            raise DisabledError('Query handler "{}" is disabled for "{}"'
                                .format(handler_name, collection_name))

    def raise_if_invalid_handler_settings(self, mongoquery):
        """ Check whether there were any typos in setting names

            After all handlers were initialized, we've had a chance to analyze all their keyword arguments.
            Now, we have the information about them, and we can check whether every kwarg was actually used.
            If not, there must be a typo.

            :raises: KeyError: Invalid settings provided
        """
        # Known keys
        handler_names = set('{}_enabled'.format(handler_name)
                            for handler_name in self._handler_names)
        valid_kwargs = set(self._all_known_kwargs_names)

        all_known_keys = handler_names | valid_kwargs | self.OTHER_KNOWN_KEYS

        # Result: unknown keys
        invalid_keys = set(self._settings.keys()) - all_known_keys

        if invalid_keys:
            raise KeyError('Invalid settings were provided for {!r}: {}'
                           .format(mongoquery, ','.join(sorted(invalid_keys))))

    def __repr__(self):
        return repr('{}({})'.format(self.__class__.__name__, self._settings))
