import unittest

from sqlalchemy import select, func, text

from restifysql import CrudOperations, OperationRequest, Result, AccessContext, Access, ExcludedMap
from restifysql import OperationSettingsDict
from restifysql.exc import StoreExecutionError, NotFoundError, InvalidColumnError, OperationError
from . import models
from .util import ExpectedQueryCounter


class CrudTestBase(unittest.IsolatedAsyncioTestCase):
    maxDiff = None

    async def asyncSetUp(self):
        # Init db
        self.engine, self.Session = await models.get_populated_database()
        self.ssn = self.Session()

        # Operations
        self.customers = CrudOperations(models.Customer, models.excluded_map)

    async def asyncTearDown(self):
        await self.ssn.close()
        await models.drop_all(self.engine)
        await self.engine.dispose()

    def request(self, access=Access.PUBLIC, query_options=None, **kwargs):
        """ Make a request """
        return OperationRequest(self.ssn, AccessContext(access), query_options, **kwargs)

    async def load_customer(self, id):
        """ Load a customer with a fresh session """
        async with self.Session() as ssn:
            return await ssn.get(models.Customer, id)

    async def count_customers(self):
        return await self.ssn.scalar(select(func.count()).select_from(models.Customer))


class ReadTest(CrudTestBase):
    """ Test: list, count, read-one, read-one-shallow """

    async def test_get_items(self):
        result = await self.customers.get_items(self.request(query_options=dict(select='name', sort='name')))
        self.assertEqual(result.status_code, 200)
        self.assertTrue(result.succeeded)
        self.assertEqual(result.result, [
            {'_id': 'C1', 'name': 'Alice'},
            {'_id': 'C2', 'name': 'Bob'},
            {'_id': 'C3', 'name': 'Carol'},
        ])
        self.assertIsNone(result.total_count)
        self.assertIsNone(result.error)

        # Access: public
        result = await self.customers.get_items(self.request(query_options=dict(
            filter={'_id': 'C1'},
            populate='account',
        )))
        self.assertEqual(result.result, [{
            '_id': 'C1',
            'name': 'Alice',
            'age': 30,
            'address': {'city': 'Paris'},
            'version': 1,
            'account_id': 'A1',
            'account': {'_id': 'A1', 'name': 'Acme'},
        }])

        # Access: private
        result = await self.customers.get_items(self.request(Access.PRIVATE, dict(
            filter={'_id': 'C1'},
            select='credit_card',
        )))
        self.assertEqual(result.result, [{'_id': 'C1', 'credit_card': '1111'}])

    async def test_get_items_total_count(self):
        customers = CrudOperations(models.Customer, models.excluded_map, total_count_header=True)

        with ExpectedQueryCounter(self.engine, 2, 'The list, and the total count'):
            result = await customers.get_items(self.request(query_options=dict(select='name', sort='name', limit=1)))

        self.assertEqual(result.status_code, 200)
        self.assertEqual(result.result, [{'_id': 'C1', 'name': 'Alice'}])
        self.assertEqual(result.total_count, 3)

    async def test_get_items_distinct(self):
        result = await self.customers.get_items(self.request(query_options=dict(distinct='name')))
        self.assertEqual(result.status_code, 200)
        self.assertEqual(sorted(result.result), ['Alice', 'Bob', 'Carol'])

        result = await self.customers.get_items(self.request(Access.PRIVATE, dict(distinct='credit_card',
                                                                                  filter={'age': {'$lt': 40}})))
        self.assertEqual(sorted(result.result), ['1111', '2222'])

    async def test_distinct_gate(self):
        scoped = []

        def context_filter(model, access_context):
            scoped.append(access_context)
            return select(model)

        customers = CrudOperations(models.Customer, models.excluded_map, context_filter=context_filter)

        for field in ('credit_card', 'email', 'address.zip'):
            for operation in (customers.get_items, customers.get_item, customers.get_shallow):
                with ExpectedQueryCounter(self.engine, 0, 'The distinct gate makes no queries'):
                    result = await operation(self.request(query_options=dict(distinct=field), id='C1'))
                self.assertEqual(result.status_code, 200, msg=field)
                self.assertEqual(result.result, [], msg=field)
                self.assertIsNone(result.error)

        self.assertEqual(scoped, [])

        # Protected callers can see the email
        result = await customers.get_items(self.request(Access.PROTECTED, dict(distinct='email')))
        self.assertEqual(len(result.result), 3)
        self.assertEqual(len(scoped), 1)

    async def test_get_count(self):
        result = await self.customers.get_count(self.request(query_options=dict(filter={'age': {'$gte': 30}})))
        self.assertEqual(result.status_code, 200)
        self.assertEqual(result.result, {'count': 2})

        result = await self.customers.get_count(self.request(query_options=dict(skip=1, limit=5)))
        self.assertEqual(result.result, {'count': 2})

        result = await self.customers.get_count(self.request(query_options=dict(filter={'name': 'Nobody'})))
        self.assertEqual(result.result, {'count': 0})

        # max_items limits lists, not counts
        customers = CrudOperations(models.Customer, models.excluded_map, max_items=1)
        result = await customers.get_count(self.request())
        self.assertEqual(result.result, {'count': 3})
        result = await customers.get_count(self.request(query_options=dict(skip=1, limit=5)))
        self.assertEqual(result.result, {'count': 2})
        result = await customers.get_items(self.request())
        self.assertEqual(len(result.result), 1)

    async def test_get_item(self):
        result = await self.customers.get_item(self.request(Access.PROTECTED, dict(populate='orders'), id='C2'))
        self.assertEqual(result.status_code, 200)
        self.assertEqual(result.result, {
            '_id': 'C2',
            'name': 'Bob',
            'age': 25,
            'email': 'bob@example.com',
            'address': {'city': 'Berlin'},
            'version': 1,
            'account_id': 'A2',
            'orders': [{'_id': 'O3', 'total': 30, 'note': None, 'customer_id': 'C2'}],
        })

        # Not found
        result = await self.customers.get_item(self.request(id='NOPE'))
        self.assertEqual(result.status_code, 404)
        self.assertIsNone(result.result)
        self.assertFalse(result.succeeded)
        self.assertEqual(result.error, {'name': 'NotFoundError', 'message': 'Not Found'})

    async def test_get_item_own_excluded_map(self):
        access_context = AccessContext(Access.PUBLIC, excluded_map=ExcludedMap().add('Customer', private=('age',)))
        result = await self.customers.get_item(OperationRequest(self.ssn, access_context, id='C1'))
        self.assertNotIn('age', result.result)
        self.assertEqual(result.result['credit_card'], '1111')

    async def test_get_shallow(self):
        result = await self.customers.get_shallow(self.request(Access.PRIVATE, dict(populate='account orders'), id='C1'))
        self.assertEqual(result.status_code, 200)
        self.assertEqual(result.result, {
            '_id': 'C1',
            'name': 'Alice',
            'age': 30,
            'email': 'alice@example.com',
            'credit_card': '1111',
            'address': True,
            'version': 1,
            'account_id': 'A1',
            'account': True,
            'orders': True,
        })

        # Nulls are left alone
        result = await self.customers.get_shallow(self.request(Access.PRIVATE, dict(populate='account'), id='C3'))
        self.assertIsNone(result.result['address'])
        self.assertIsNone(result.result['account'])

        # Not found
        result = await self.customers.get_shallow(self.request(id='NOPE'))
        self.assertEqual(result.status_code, 404)
        self.assertIsNone(result.result)

    def test_shallow(self):
        customers = CrudOperations(models.Customer)
        self.assertEqual(customers.shallow({'_id': {'$oid': 1}, 'a': 1, 'b': {'c': 1}, 'd': [], 'e': None}),
                         {'_id': {'$oid': 1}, 'a': 1, 'b': True, 'd': True, 'e': None})

    async def test_lean(self):
        customers = CrudOperations(models.Customer, lean=False)

        result = await customers.get_items(self.request(query_options=dict(sort='name')))
        self.assertEqual([type(c) for c in result.result], [models.Customer] * 3)
        self.assertEqual([c.name for c in result.result], ['Alice', 'Bob', 'Carol'])

        result = await customers.get_item(self.request(id='C1'))
        self.assertIsInstance(result.result, models.Customer)

    async def test_context_filter(self):
        def context_filter(model, access_context):
            return select(model).where(model.account_id == 'A1')

        async def async_context_filter(model, access_context):
            return select(model).where(model.account_id == 'A1')

        for cf in (context_filter, async_context_filter):
            customers = CrudOperations(models.Customer, context_filter=cf)

            result = await customers.get_items(self.request(query_options=dict(select='name')))
            self.assertEqual(result.result, [{'_id': 'C1', 'name': 'Alice'}])

            result = await customers.get_count(self.request())
            self.assertEqual(result.result, {'count': 1})

            result = await customers.get_item(self.request(id='C1'))
            self.assertEqual(result.status_code, 200)

            # Out of scope
            result = await customers.get_item(self.request(id='C2'))
            self.assertEqual(result.status_code, 404)
            result = await customers.modify_object(self.request(id='C2', body={'age': 1}))
            self.assertEqual(result.status_code, 404)
            result = await customers.delete_item(self.request(id='C2'))
            self.assertEqual(result.status_code, 404)

        self.assertEqual((await self.load_customer('C2')).age, 25)


class ErrorsTest(CrudTestBase):
    """ Test: error reporting """

    async def test_invalid_query(self):
        result = await self.customers.get_items(self.request(query_options=dict(filter={'NOPE': 1})))
        self.assertEqual(result.status_code, 400)
        self.assertIsNone(result.result)
        self.assertEqual(result.error['name'], 'StoreExecutionError')
        self.assertIn('NOPE', result.error['message'])

        result = await self.customers.get_count(self.request(query_options=dict(limit=-1)))
        self.assertEqual(result.status_code, 400)

    async def test_on_error(self):
        errors = []

        def on_error(err, request):
            errors.append(err)
            request.result.error = 'sync'

        async def async_on_error(err, request):
            errors.append(err)
            request.result.error = 'async'

        for handler, name in ((on_error, 'sync'), (async_on_error, 'async')):
            customers = CrudOperations(models.Customer, on_error=handler)

            # Query errors are wrapped
            result = await customers.get_items(self.request(query_options=dict(sort='NOPE')))
            self.assertEqual(result.status_code, 400)
            self.assertEqual(result.error, name)

            err = errors.pop()
            self.assertIsInstance(err, StoreExecutionError)
            self.assertIsInstance(err.original, InvalidColumnError)
            self.assertIs(err.__cause__, err.original)

            # Not found is not wrapped
            result = await customers.get_item(self.request(id='NOPE'))
            self.assertEqual(result.status_code, 404)
            self.assertIsInstance(errors.pop(), NotFoundError)

    async def test_store_error(self):
        customers = CrudOperations(models.Customer,
                                   context_filter=lambda model, ctx: select(model).where(text('no_such_column = 1')))

        result = await customers.get_items(self.request())
        self.assertEqual(result.status_code, 400)
        self.assertEqual(result.error['name'], 'StoreExecutionError')
        self.assertIn('no_such_column', result.error['message'])

        # Writes roll back
        result = await customers.delete_items(self.request())
        self.assertEqual(result.status_code, 400)
        self.assertEqual(await self.count_customers(), 3)

    async def test_operation_error_status(self):
        def context_filter(model, access_context):
            raise OperationError('Service Unavailable', 503)

        customers = CrudOperations(models.Customer, context_filter=context_filter)
        with self.assertLogs('restifysql.crud.operations', 'ERROR'):
            result = await customers.get_items(self.request())
        self.assertEqual(result.status_code, 503)
        self.assertEqual(result.error, {'name': 'OperationError', 'message': 'Service Unavailable'})

    async def test_unexpected_errors_propagate(self):
        def context_filter(model, access_context):
            raise KeyError('boom')

        customers = CrudOperations(models.Customer, context_filter=context_filter)
        with self.assertRaises(KeyError):
            await customers.get_items(self.request())

    def test_invalid_settings(self):
        with self.assertRaises(KeyError):
            CrudOperations(models.Customer, max_itemz=1)

        # Settings dict
        customers = CrudOperations(models.Customer, **OperationSettingsDict(
            lean=False,
            max_items=10,
            read_preference='secondary',
        ))
        self.assertFalse(customers.lean)
        translator = customers.reusable_translator.query(None)
        self.assertEqual(translator.handler_limit.limit, 10)
        self.assertEqual(translator.handler_read_preference.read_preference, 'secondary')


class WriteTest(CrudTestBase):
    """ Test: create, update """

    async def test_create_object(self):
        result = await self.customers.create_object(self.request(
            query_options=dict(populate='account'),
            body={
                '_id': 'HACK',
                'version': 100,
                'name': 'Dave',
                'age': 50,
                'credit_card': '9999',
                'address': {'city': 'Rome'},
                'account': {'_id': 'A2', 'name': 'Renamed'},
            },
        ))
        self.assertEqual(result.status_code, 201, msg=result.error)

        doc = result.result
        id = doc.pop('_id')
        self.assertNotEqual(id, 'HACK')
        self.assertEqual(doc, {
            'name': 'Dave',
            'age': 50,
            'address': {'city': 'Rome'},
            'version': 1,
            'account_id': 'A2',
            'account': {'_id': 'A2', 'name': 'Bolt'},
        })

        # Stored
        customer = await self.load_customer(id)
        self.assertEqual(customer.name, 'Dave')
        self.assertIsNone(customer.credit_card)  # not writable by the public
        self.assertEqual(customer.account_id, 'A2')
        self.assertEqual(await self.count_customers(), 4)

    async def test_create_object_lean(self):
        customers = CrudOperations(models.Customer, lean=False)
        result = await customers.create_object(self.request(body={'name': 'Dave'}))
        self.assertEqual(result.status_code, 201)
        self.assertIsInstance(result.result, models.Customer)
        self.assertEqual(result.result.name, 'Dave')

    async def test_create_object_errors(self):
        # Model validator
        result = await self.customers.create_object(self.request(body={'name': ''}))
        self.assertEqual(result.status_code, 400)
        self.assertIn('must not be empty', result.error['message'])

        # Missing reference
        result = await self.customers.create_object(self.request(body={'name': 'Dave', 'account': 'NOPE'}))
        self.assertEqual(result.status_code, 400)

        # Unknown field
        result = await self.customers.create_object(self.request(body={'name': 'Dave', 'NOPE': 1}))
        self.assertEqual(result.status_code, 400)

        # Not an object
        result = await self.customers.create_object(self.request(body=[1]))
        self.assertEqual(result.status_code, 400)

        # Nothing was created
        self.assertEqual(await self.count_customers(), 3)

    async def test_create_object_no_autocommit(self):
        customers = CrudOperations(models.Customer, autocommit=False)
        result = await customers.create_object(self.request(body={'name': 'Dave'}))
        self.assertEqual(result.status_code, 201)
        self.assertEqual(await self.count_customers(), 4)

        # Committing is up to the caller
        await self.ssn.rollback()
        self.assertEqual(await self.count_customers(), 3)

    async def test_modify_object(self):
        result = await self.customers.modify_object(self.request(
            id='C1',
            body={'_id': 'HACK', 'age': 31, 'address': {'city': 'X'}, 'email': 'hack@example.com'},
        ))
        self.assertEqual(result.status_code, 200, msg=result.error)
        self.assertEqual(result.result, {
            '_id': 'C1',
            'name': 'Alice',
            'age': 31,
            'address': {'city': 'X'},  # zip is hidden
            'version': 2,
            'account_id': 'A1',
        })

        # Stored: a partial update
        customer = await self.load_customer('C1')
        self.assertEqual(customer.age, 31)
        self.assertEqual(customer.address, {'city': 'X', 'zip': '75001'})
        self.assertEqual(customer.email, 'alice@example.com')
        self.assertEqual(customer.version, 2)
        self.assertIsNone(await self.load_customer('HACK'))

    async def test_modify_object_references(self):
        result = await self.customers.modify_object(self.request(
            Access.PRIVATE,
            dict(select='name', populate=['account', {'path': 'orders', 'select': 'total'}]),
            id='C1',
            body={'account': {'_id': 'A2'}, 'orders': [{'_id': 'O3'}, 'O1']},
        ))
        self.assertEqual(result.status_code, 200, msg=result.error)
        self.assertEqual(result.result, {
            '_id': 'C1',
            'name': 'Alice',
            'account': {'_id': 'A2', 'name': 'Bolt', 'secret': 's2'},
            'orders': [{'_id': 'O1', 'total': 10}, {'_id': 'O3', 'total': 30}],
        })

    async def test_modify_object_noop(self):
        result = await self.customers.modify_object(self.request(id='C1', body={'_id': 'C1', 'version': 5}))
        self.assertEqual(result.status_code, 200)
        self.assertEqual(result.result['version'], 1)
        self.assertEqual((await self.load_customer('C1')).version, 1)

    async def test_modify_object_errors(self):
        # Not found
        result = await self.customers.modify_object(self.request(id='NOPE', body={'age': 1}))
        self.assertEqual(result.status_code, 404)
        self.assertIsNone(result.result)

        # Validator
        result = await self.customers.modify_object(self.request(id='C1', body={'name': ''}))
        self.assertEqual(result.status_code, 400)
        self.assertEqual((await self.load_customer('C1')).name, 'Alice')

        # Referenced document with no identity: the reference is kept
        result = await self.customers.modify_object(self.request(Access.PRIVATE, id='C1', body={'account': {'name': 'Acme'}}))
        self.assertEqual(result.status_code, 400)
        self.assertEqual(result.error['name'], 'StoreExecutionError')
        customer = await self.load_customer('C1')
        self.assertEqual(customer.account_id, 'A1')
        self.assertEqual(customer.version, 1)

        result = await self.customers.modify_object(self.request(Access.PRIVATE, id='C1', body={'orders': [{'total': 5}]}))
        self.assertEqual(result.status_code, 400)

    async def test_modify_object_loaded(self):
        customers = CrudOperations(models.Customer, find_one_and_update=False)

        # Without an existence check
        result = await customers.modify_object(self.request(id='C2', body={'age': 26}))
        self.assertEqual(result.status_code, 404)

        # With the document loaded
        document = await self.ssn.get(models.Customer, 'C2')
        result = await customers.modify_object(self.request(id='C2', body={'age': 26}, result=Result(document)))
        self.assertEqual(result.status_code, 200)
        self.assertEqual(result.result['age'], 26)
        self.assertEqual((await self.load_customer('C2')).age, 26)


class DeleteTest(CrudTestBase):
    """ Test: delete-one, delete-many """

    async def test_delete_item(self):
        result = await self.customers.delete_item(self.request(id='C3'))
        self.assertEqual(result.status_code, 204)
        self.assertIsNone(result.result)
        self.assertIsNone(await self.load_customer('C3'))

        # Gone
        result = await self.customers.delete_item(self.request(id='C3'))
        self.assertEqual(result.status_code, 404)
        self.assertEqual(await self.count_customers(), 2)

    async def test_delete_item_with_references(self):
        result = await self.customers.delete_item(self.request(id='C1'))
        self.assertEqual(result.status_code, 204)

        async with self.Session() as ssn:
            order = await ssn.get(models.Order, 'O1')
            self.assertIsNone(order.customer_id)

    async def test_delete_item_loaded(self):
        customers = CrudOperations(models.Customer, find_one_and_remove=False)

        # Without an existence check
        result = await customers.delete_item(self.request(id='C3'))
        self.assertEqual(result.status_code, 404)

        # With the document loaded
        document = await self.ssn.get(models.Customer, 'C3')
        result = await customers.delete_item(self.request(id='C3', result=Result(document)))
        self.assertEqual(result.status_code, 204)
        self.assertIsNone(await self.load_customer('C3'))

    async def test_delete_items(self):
        orders = CrudOperations(models.Order)

        result = await orders.delete_items(self.request(query_options=dict(filter={'total': {'$gte': 20}})))
        self.assertEqual(result.status_code, 204)
        self.assertIsNone(result.result)

        remaining = (await self.ssn.scalars(select(models.Order._id))).all()
        self.assertEqual(remaining, ['O1'])

        # Sorted & sliced
        result = await self.customers.delete_items(self.request(query_options=dict(sort='-age', limit=2)))
        self.assertEqual(result.status_code, 204)
        self.assertEqual((await self.ssn.scalars(select(models.Customer._id))).all(), ['C2'])

        # Invalid
        result = await self.customers.delete_items(self.request(query_options=dict(filter={'NOPE': 1})))
        self.assertEqual(result.status_code, 400)
        self.assertEqual(await self.count_customers(), 1)
