from .inspect import pluck_kwargs_from


class TranslatorSettingsHandler:
    """ Settings keeper for QueryTranslator

        This is essentially a helper which will feed the correct kwargs to every handler.

        Handlers receive settings as kwargs to their __init__() methods,
        and those kwargs have unique names.

        This class will collect all settings as a single, flat dict,
        and give each handler only the settings it wants.
    """

    def __init__(self, settings: dict):
        """ Store the settings for every handler

            :param settings: dict of handler kwargs
        """
        if not isinstance(settings, dict):
            raise TypeError('Handler settings must be a dict')

        #: Settings dict
        self._settings = settings  # we don't make a copy, because we don't modify it

        #: kwarg names for every handler: dict[handler] = set()
        self._handler_kwargs_names = {}

        #: all kwargs names (to identify invalid ones)
        self._all_known_kwargs_names = set()

    def get_settings(self, handler_name: str, handler_cls: type) -> dict:
        """ Get settings for the given handler

            Every time a class is given us, we analyze its __init__() method in order to know its kwargs
            and their default values.
            Then, we take the matching keys from the settings dict, we take defaults from the argument defaults,
            and make it all into `kwargs` that will be given to the class.
        """
        kwargs = pluck_kwargs_from(self._settings, for_func=handler_cls.__init__)

        # Store the data that we'll need
        self._handler_kwargs_names[handler_name] = set(kwargs)
        self._all_known_kwargs_names.update(kwargs)

        # Done
        return kwargs  # for the handler's __init__()

    def raise_if_invalid_handler_settings(self, translator):
        """ Check whether there were any typos in setting names

            After all handlers were initialized, we've had a chance to analyze all their keyword arguments.
            Now, we have the information about them, and we can check whether every kwarg was actually used.
            If not, there must be a typo.

            :raises: KeyError: Invalid settings provided
        """
        invalid_keys = set(self._settings) - self._all_known_kwargs_names
        if invalid_keys:
            raise KeyError('Invalid settings were provided for {!r}: {}'
                           .format(translator, ','.join(sorted(invalid_keys))))

    def __repr__(self):
        return '{}({})'.format(self.__class__.__name__, self._settings)
