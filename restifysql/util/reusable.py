from copy import copy


class Reusable:
    """ Make a reusable handler or translator

        When a handler object is initialized, it's a pity to waste it!
        This class wrapper makes a copy every time an attribute is accessed on its wrapped object.

        Example:

            project = Reusable(ProjectHandler(Customer, resource, force_exclude=('credit_card',)))

        It also works for QueryTranslator:

            translator = Reusable(QueryTranslator(Customer))
            stmt = translator.query(query_options).end()
    """
    __slots__ = ('__obj',)

    def __init__(self, obj):
        self.__obj = obj

    # copy-on-access

    def __getattr__(self, attr):
        return getattr(copy(self.__obj), attr)

    def __repr__(self):
        return repr(self.__obj)
