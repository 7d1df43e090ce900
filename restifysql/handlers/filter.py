"""
### Filter

Filtering corresponds to the `WHERE` part of an SQL query.

Example of filtering:

```javascript
$.get('/api/customer?filter=' + JSON.stringify({
    // all conditions are AND-ed together
    total: { $gte: 18, $lte: 25 },  // total 18..25
    name: 'Alice',  // name = "Alice"
}))
```

#### Field Operators

* `{ a: 1 }` - equality check: `field = value`. This is a shortcut for the `$eq` operator.
* `{ a: { $eq: 1 } }` - equality check: `field = value` (alias).
* `{ a: { $lt: 1 } }`  - less than: `field < value`
* `{ a: { $lte: 1 } }` - less or equal than: `field <= value`
* `{ a: { $ne: 1 } }` - inequality check: `field != value`.
* `{ a: { $gte: 1 } }` - greater or equal than: `field >= value`
* `{ a: { $gt: 1 } }` - greater than: `field > value`
* `{ a: { $prefix: 1 } }` - prefix: `field LIKE "value%"`
* `{ a: { $in: [...] } }` - any of. Field is equal to any of the given array of values.
* `{ a: { $nin: [...] } }` - none of. Field is not equal to any of the given array of values.
* `{ a: { $exists: true } }` - value is not `null`.

#### Boolean Operators

* `{ $or: [ {..criteria..}, .. ] }`  - any is true
* `{ $and: [ {..criteria..}, .. ] }` - all are true
* `{ $nor: [ {..criteria..}, .. ] }` - none is true
* `{ $not: { ..criteria.. } }` - negation

#### Embedded documents and references

Fields of embedded (JSON) documents are reached with dot-notation: `{ 'address.city': 'X' }`.

Columns of a referenced model use the same notation: `{ 'account.name': 'Acme' }`.
"""

from sqlalchemy.sql.expression import and_, or_, not_, true

from .base import QueryHandlerBase
from ..bag import CombinedBag
from ..exc import InvalidQueryError, InvalidColumnError


# region Filter Expression Classes

def _is_array(value):
    return isinstance(value, (list, tuple, set, frozenset))


class FilterExpressionBase:
    """ An expression from the filter object """

    __slots__ = ('operator_str', 'value')

    def __init__(self, operator_str, value):
        self.operator_str = operator_str
        self.value = value

    def compile_expression(self):
        """ Compiles the expression into an SQL expression """
        raise NotImplementedError()

    def compile_standalone_expression(self):
        """ Compiles the expression so that it can be used on its own, e.g. within a boolean operator """
        return self.compile_expression()

    @staticmethod
    def sql_anded_together(conditions):
        """ Take a list of conditions and AND then together into an SQL expression """
        # No conditions: just return True, which is a valid sqlalchemy expression for filtering
        if not conditions:
            return true()

        cc = and_(*conditions)
        # Put parentheses around it, if necessary
        return cc.self_group() if len(conditions) > 1 else cc


class LiteralExpression(FilterExpressionBase):
    """ An expression that is already compiled and ready to be used: e.g. force_filter expressions """
    __slots__ = ('expression',)

    def __init__(self, expression):
        # no super()
        self.expression = expression

    def __repr__(self):
        return '{}({!r})'.format(self.__class__.__name__, str(self.expression))

    def compile_expression(self):
        return self.expression


class FilterBooleanExpression(FilterExpressionBase):
    """ A boolean expression.

        Consists of: an operator ($and, etc), and a value (list of FilterExpressionBase)
    """

    def __repr__(self):
        return '({}: {})'.format(self.operator_str, self.value)

    def compile_expression(self):
        # self.operator_str: $and, $or, $nor, $not
        # self.value: list[FilterExpressionBase] for $not, list[list[FilterExpressionBase]] for the rest
        if self.operator_str == '$not':
            criterion = self.sql_anded_together([
                c.compile_standalone_expression()
                for c in self.value
            ])
            return not_(criterion)

        criteria = [self.sql_anded_together([c.compile_standalone_expression() for c in cs])
                    for cs in self.value]

        if self.operator_str in ('$or', '$nor'):
            cc = or_(*criteria)
        elif self.operator_str == '$and':
            cc = and_(*criteria)
        else:
            raise NotImplementedError('Unknown operator: {}'.format(self.operator_str))

        cc = cc.self_group() if len(criteria) > 1 else cc

        if self.operator_str == '$nor':
            return ~cc
        return cc


class FilterColumnExpression(FilterExpressionBase):
    """ An expression involving a column

        Consists of: an operator ($eq, etc), a column, and a value to compare the column to
    """

    __slots__ = ('bag', 'column_name', 'column', 'operator_lambda', 'column_expression')

    def __init__(self,
                 bag, column_name, column,
                 operator_str, operator_lambda,
                 value):
        """ Init a column expression

        :param bag: the bag that contains information about the column
        :type bag: restifysql.bag.ColumnsBag
        :param column_name: Name of the column referenced (possibly, with a dot!)
        :param column: The actual column, or an expression reaching for a JSON property
        :param operator_str: The operator to use, e.g. $eq
        :param operator_lambda: A callable that implements an SQL expression handling the operator
        :param value: The value the operator is applied to
        """
        super(FilterColumnExpression, self).__init__(operator_str, value)
        self.bag = bag
        self.column_name = column_name
        self.column = column
        self.operator_lambda = operator_lambda
        self.column_expression = self.column

    def __repr__(self):
        return '{} {} {!r}'.format(self.column_name, self.operator_str, self.value)

    def is_json_path(self):
        return '.' in self.column_name and self.bag.is_column_json(self.column_name)

    def preprocess_column(self):
        """ A JSON element has to be converted to a type that matches the value """
        col = self.column
        if self.is_json_path():
            sample = self.value[0] if _is_array(self.value) and self.value else self.value
            if isinstance(sample, bool):
                col = col.as_boolean()
            elif isinstance(sample, int):
                col = col.as_integer()
            elif isinstance(sample, float):
                col = col.as_float()
            else:
                col = col.as_string()
        self.column_expression = col

    def compile_expression(self):
        self.preprocess_column()
        return self.operator_lambda(self.column_expression, self.value)


class FilterRelatedColumnExpression(FilterColumnExpression):
    """ An expression involving a related column (dot-notation: 'orders.total') """

    __slots__ = ('relation_name',)

    def __init__(self,
                 bag, relation_name,
                 column_name, column,
                 operator_str, operator_lambda,
                 value):
        super(FilterRelatedColumnExpression, self).__init__(bag, column_name, column, operator_str, operator_lambda, value)
        self.relation_name = relation_name

    def compile_standalone_expression(self):
        # EXISTS() subquery of its own
        relationship = self.bag.get_relationship(self.column_name)
        criterion = self.compile_expression()
        if self.bag.is_relationship_array(self.column_name):
            return relationship.any(criterion)
        return relationship.has(criterion)

# endregion


class FilterHandler(QueryHandlerBase):
    """ Filter expression: the `filter` query option.

        Supported: Columns, JSON sub-fields, Related Columns
    """

    query_options_field_name = 'filter'

    def __init__(self, model, resource, force_filter=None, scalar_operators=None):
        """ Init a filter expression

        :param model: Sqlalchemy model to work with
        :param resource: Resource model
        :param force_filter: A filtering condition that will be forcefully applied to the query.
            Can be:
                * a dict, which will become ANDed to every request ;
                * a `lambda model:`: a callable that may generate any expression Select.where() can handle.
        :param scalar_operators: A dict of additional operators to recognize.
            A mapping: {'$operator': lambda column, value: expression}.
        :type scalar_operators: dict[str, lambda]
        """
        super(FilterHandler, self).__init__(model, resource)

        # On input
        self.expressions = None

        # Extra configuration
        self._extra_scalar_ops = scalar_operators or {}

        # Extra configuration: force_filter
        if force_filter is None:
            self.force_filter = None
        elif callable(force_filter):
            self.force_filter = force_filter
        elif isinstance(force_filter, dict):
            self.force_filter = force_filter
            self._parse_criteria(self.force_filter)  # validate force_filter
        else:
            raise ValueError(force_filter)

    def _get_supported_bags(self):
        return CombinedBag(
            col=self.resource.columns,
            rcol=self.resource.related_columns,
        )

    # Operators: lambda column, value
    _operators_scalar = {
        '$eq':  lambda col, val: col == val,
        '$ne':  lambda col, val: col.is_distinct_from(val),  # '!=' would give NULL for nullable columns
        '$lt':  lambda col, val: col < val,
        '$lte': lambda col, val: col <= val,
        '$gt':  lambda col, val: col > val,
        '$gte': lambda col, val: col >= val,
        '$prefix': lambda col, val: col.startswith(val),
        '$in':  lambda col, val: col.in_(val),
        '$nin': lambda col, val: col.not_in(val),
        '$exists': lambda col, val: col.is_not(None) if val else col.is_(None),
    }

    # List of operators that always require array argument
    _operators_require_array_value = frozenset(('$in', '$nin'))

    # List of boolean operators, handled by a separate method
    _boolean_operators = frozenset(('$and', '$or', '$nor', '$not'))

    # These classes implement compilation
    _COLUMN_EXPRESSION_CLS = FilterColumnExpression
    _RELATED_COLUMN_EXPRESSION_CLS = FilterRelatedColumnExpression
    _BOOLEAN_EXPRESSION_CLS = FilterBooleanExpression

    def input(self, criteria):
        super(FilterHandler, self).input(criteria)
        self.expressions = self._parse_criteria(criteria)

        # Apply force_filter
        extra_filter = None
        if isinstance(self.force_filter, dict):
            extra_filter = self._parse_criteria(self.force_filter)
        elif callable(self.force_filter):
            extra_filter = self.force_filter(self.model)
            if not isinstance(extra_filter, (list, tuple)):
                extra_filter = [extra_filter]
            extra_filter = map(LiteralExpression, extra_filter)

        if extra_filter:
            self.expressions.extend(extra_filter)

        return self

    def _parse_criteria(self, criteria):
        """ Parse criteria and return a list of parsed objects.

        :type criteria: dict | None
        :rtype: list[FilterExpressionBase]
        """
        if not criteria:
            criteria = {}

        if not isinstance(criteria, dict):
            raise InvalidQueryError('Filter criteria must be one of: null, object')

        # In the end, those will be ANDed together
        expressions = []

        # Assuming a dict of mixed { column: value }s and  { column: { $op: value } }s
        for key, criteria in criteria.items():
            # Boolean expressions? ($op: value}
            if key in self._boolean_operators:
                boolean_expression = self._parse_boolean_operator(key, criteria)
                if boolean_expression is not None:
                    expressions.append(boolean_expression)
                continue

            # A column, a JSON path, or a related column
            column_name = key
            try:
                bag_name, bag, column = self.supported_bags[column_name]
            except KeyError:
                raise InvalidColumnError(self.resource.model_name, column_name, self.query_options_field_name)

            # Shorthand: {name: "Kevin"} is {name: {$eq: "Kevin"}}
            if not isinstance(criteria, dict):
                criteria = {'$eq': criteria}

            for operator, value in criteria.items():
                try:
                    operator_lambda = self._lookup_operator(operator)
                except KeyError:
                    raise InvalidQueryError('Unsupported operator "{}" found in filter for column `{}`'
                                            .format(operator, column_name))

                if operator in self._operators_require_array_value and not _is_array(value):
                    raise InvalidQueryError('Filter: {} argument must be an array for column `{}`'
                                            .format(operator, column_name))

                if bag_name == 'col':
                    expressions.append(self._COLUMN_EXPRESSION_CLS(
                        bag, column_name, column,
                        operator, operator_lambda,
                        value
                    ))
                elif bag_name == 'rcol':
                    expressions.append(self._RELATED_COLUMN_EXPRESSION_CLS(
                        bag, bag.get_relationship_name(column_name),
                        column_name, column,
                        operator, operator_lambda,
                        value
                    ))
                else:
                    raise NotImplementedError('Unsupported column type: {}'.format(bag_name))

        return expressions

    def _parse_boolean_operator(self, op, criteria):
        """ Used in _parse_criteria() to handle boolean operators

            Example:
                Input: { $and: [ {}, ... ] }
                -> _parse_boolean_operator('$and', [ {}, ... ])
        """
        if op == '$not':
            if not isinstance(criteria, dict):
                raise InvalidQueryError('{}: $not argument must be an object'
                                        .format(self.query_options_field_name))
            return self._BOOLEAN_EXPRESSION_CLS(op, self._parse_criteria(criteria))

        # $and, $or, $nor accept a list
        if not isinstance(criteria, (list, tuple)):
            raise InvalidQueryError('{}: {} argument must be a list'
                                    .format(self.query_options_field_name, op))

        criteria = [self._parse_criteria(s) for s in criteria]

        # Empty criteria: { $or: [] } does not make sense
        if len(criteria) == 0:
            return None
        return self._BOOLEAN_EXPRESSION_CLS(op, criteria)

    def _lookup_operator(self, operator):
        """ Lookup an operator in `self`, or extra operators

        :raises: KeyError
        """
        return self._operators_scalar.get(operator) or self._extra_scalar_ops[operator]

    def compile_statement(self):
        """ Create an SQL expression

        :rtype: sqlalchemy.sql.elements.BooleanClauseList
        """
        conditions = []

        # Group filters on the same relationship: one EXISTS() subquery per relationship
        column_expressions = []
        relationship_expressions = {}
        for e in self.expressions:
            if isinstance(e, FilterRelatedColumnExpression):
                relationship_expressions.setdefault(e.relation_name, []).append(e)
            else:
                column_expressions.append(e)

        conditions.extend(e.compile_expression() for e in column_expressions)

        for rel_name, expressions in relationship_expressions.items():
            rel_conditions = [e.compile_expression() for e in expressions]

            relationship = self.resource.relations[rel_name]
            if self.resource.relations.is_relationship_array(rel_name):
                conditions.append(relationship.any(and_(*rel_conditions)))
            else:
                conditions.append(relationship.has(and_(*rel_conditions)))

        return self._BOOLEAN_EXPRESSION_CLS.sql_anded_together(conditions)

    def alter_query(self, stmt):
        # An empty expression would put an ugly 'WHERE true' onto the query
        if self.expressions:
            stmt = stmt.where(self.compile_statement())
        return stmt
