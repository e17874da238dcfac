from typing import Callable, Iterable, Mapping, Union

from .inspect import pluck_kwargs_from


class MongoQuerySettingsDict(dict):
    """ MongoQuery settings container.

        Is only used for nice autocompletion and documentation purposes only! :)

        However... it may allow custom tweaks for configurations, if you override it.
        Here are some ideas:

        * Default values (e.g. a lower `max_items` for every collection)
        * Configuration merging (e.g. inherit configuration)

        The keyword settings in this object are just plain kwargs names
        for every handler object's __init__ method,
        which are fed to subclasses of MongoQueryHandlerBase by MongoQuerySettingsHandler.

        In addition to that, there are '<handler-name>_enabled' settings,
        that can enable or disable a handler.
    """

    def __init__(self,
                 # --- project
                 default_projection: Union[dict, list, str, None] = None,
                 force_exclude: Iterable[str] = None,
                 # --- filter
                 force_filter: Union[dict, Callable, None] = None,
                 scalar_operators: Mapping[str, Callable] = None,
                 # --- limit
                 max_items: int = None,
                 # --- planner
                 use_indexes: bool = True,
                 # --- enabled_handlers?
                 count_enabled: bool = True,
                 filter_enabled: bool = True,
                 limit_enabled: bool = True,
                 project_enabled: bool = True,
                 sort_enabled: bool = True,
                 ):
        """ `MongoQuery` has a few settings that let you configure the way queries are made,
        and to implement some custom behaviors.

        These settings can be nicely kept in a MongoQuerySettingsDict,
        and given to a collection when it's created.

        Example:
            ```python
            from mongomem import Database, MongoQuerySettingsDict

            db = Database('bookstore')
            db.create_collection('books', MongoQuerySettingsDict(
                # never show the internal field
                force_exclude=('supplier_price',),
                # no more than 100 books per request
                max_items=100,
            ))
            ```

        Args:
            default_projection (dict[str, int] | list[str] | None): (for: project)
                The default projection to use when no input was provided.
                When an input value is given, `default_projection` is not used at all: it overrides the default
                completely.

                NOTE: If you want to return *all fields* by default, use `None`.
            force_exclude (list[str]): (for: project)
                A list of fields that will always be excluded from the output.
                No matter what you do, you can't get them.
            force_filter (dict | Callable): (for: filter)
                A dictionary with a filter that will be forced onto every request;
                or a Python `callable(document) -> bool`.
            scalar_operators (dict[str, Callable]): (for: filter)
                A dict of additional operators: `{'$operator': lambda field_value, value: bool}`.
                A better way to declare global operators would be to subclass MongoFilter
                and declare the additional operators inside the class.
            max_items: (for: limit)
                The maximum number of documents that can be loaded with one query.
                The user can never go any higher than that, and this value is forced onto every query.
            use_indexes (bool): (for: the query planner)
                Use indexes to find and sort documents.
                When `False`, every query does a full collection scan. The results are the same.

            count_enabled (bool): Enable/disable the `count` handler
            filter_enabled (bool): Enable/disable the `filter` handler
            limit_enabled (bool): Enable/disable the `limit` handler
            project_enabled (bool): Enable/disable the `project` handler
            sort_enabled (bool): Enable/disable the `sort` handler
        """
        super(MongoQuerySettingsDict, self).__init__()
        self.update({k: v
                     for k, v in locals().items()
                     if k not in {'__class__', 'self'}})
        # NOTE: locals() is used because every argument has to end up in the dict, and it's easy to forget one.

    def and_more(self, **settings):
        """ Copy the object and add more settings to it """
        return self.__class__(**{**self, **settings})

    @classmethod
    def pluck_from(cls, dict, skip=('max_items',)):
        """ Initialize the class by plucking kwargs from a dictionary.

            This is useful when you have a dict with configuration for multiple classes, and you want to initialize
            this one by getting only the keys you need.

            Args:
                skip: List of key names to skip when copying. Sometimes it just does not make sense to copy all values.
        """
        kwargs = pluck_kwargs_from(dict,
                                   for_func=cls.__init__,
                                   skip=skip
                                   )
        return cls(**kwargs)
