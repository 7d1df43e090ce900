from ..bag import ResourceModel
from ..exc import InvalidColumnError


class QueryHandlerBase:
    """ An implementation of a handler for the QueryTranslator

        Every subclass will handle a single dimension of the Query Options
    """

    #: Name of the Query Options field that this object is capable of handling
    query_options_field_name = None

    def __init__(self, model, resource):
        """ Initialize the handler with a model.

        This method does *not* receive any input data just yet, with the purpose of having an
        object that can be configured with some settings right at init time.

        :param model: The sqlalchemy model it's being applied to
        :param resource: Resource model.
        :type resource: ResourceModel

        NOTE: Any arguments that have default values will be treated as handler settings!!
        """
        #: The model to handle the Query Options for
        self.model = model
        #: Resource model: because we need access to the lists of its properties
        self.resource = resource
        #: The bag that's used to validate the input
        self.supported_bags = self._get_supported_bags()

        # Has the input() method been called already?
        self.input_received = False
        self.input_value = None

        #: QueryTranslator bound to this object. It may remain uninitialized.
        self.translator = None

    def with_translator(self, translator):
        """ Bind this object with a QueryTranslator

            :type translator: restifysql.query.QueryTranslator
        """
        self.translator = translator
        return self

    def __copy__(self):
        """ Some objects may be reused: i.e. their state before input() is called.

        Reusable handlers are implemented using the Reusable() wrapper which performs the
        automatic copying
        """
        cls = self.__class__
        result = cls.__new__(cls)
        result.__dict__.update(self.__dict__)
        return result

    def _get_supported_bags(self):
        """ Get the bag interface supported by this handler

        :rtype: restifysql.bag._PropertiesBagBase
        """
        raise NotImplementedError()

    def validate_properties(self, prop_names, bag=None, where=None):
        """ Validate the given list of property names against `self.supported_bags`

        :raises InvalidColumnError
        """
        if bag is None:
            bag = self.supported_bags

        invalid = bag.get_invalid_names(prop_names)
        if invalid:
            raise InvalidColumnError(self.resource.model_name,
                                     sorted(invalid)[0],
                                     where or self.query_options_field_name)

    def input(self, qo_value):
        """ Get a section of the Query Options.

        The purpose of this method is to receive the input, validate it, and store it.

        :raises InvalidRelationError
        :raises InvalidColumnError
        :raises InvalidQueryError
        """
        self.input_value = qo_value  # no copying. Try not to modify it.
        self.input_received = True

        # Make sure that input() can only be used once
        self.input = self.__raise_input_not_reusable

        return self

    def is_input_empty(self):
        """ Test whether the input value was empty """
        return not self.input_value

    def __raise_input_not_reusable(self, *args, **kwargs):
        raise RuntimeError("You can't use the {}.input() method twice. "
                           "Wrap the class into Reusable(), or copy() it!"
                           .format(self.__class__.__name__))

    def compile_columns(self):
        """ Compile a list of columns """
        raise NotImplementedError()

    def compile_options(self):
        """ Compile a list of loader options for Select.options(*) """
        raise NotImplementedError()

    def compile_statement(self):
        """ Compile an SQL expression """
        raise NotImplementedError()

    def alter_query(self, stmt):
        """ Alter the given statement and apply the Query Options field this handler is handling

        :type stmt: sqlalchemy.sql.Select
        :rtype: sqlalchemy.sql.Select
        """
        raise NotImplementedError()
