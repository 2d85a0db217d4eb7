import copy
import threading
import unittest
from concurrent.futures import ThreadPoolExecutor

from filtersql import IncludeGraph, ForeignKeyMapping, ForeignKeyProjector, LookupStore, DictLookupStore, project
from filtersql.exc import LookupInfrastructureError, InfrastructureError
from .models import catalog


USER_MAPPING = ForeignKeyMapping('User', 'id', 'external_id')
COMPANY_MAPPING = ForeignKeyMapping('Company', 'id', 'slug')

LOOKUP_DATA = {
    'User': {7: 'ext-007', 8: 'ext-008', 9: 'ext-009'},
    'Company': {1: 'acme', 2: 'globex'},
}


class RecordingLookupStore(DictLookupStore):
    """ A DictLookupStore that remembers every lookup """

    def __init__(self, data):
        super(RecordingLookupStore, self).__init__(data)
        self.calls = []

    def batch_find(self, entity, pk_field, external_field, values):
        self.calls.append((entity, pk_field, external_field, values))
        return super(RecordingLookupStore, self).batch_find(entity, pk_field, external_field, values)


class FailingLookupStore(LookupStore):
    def batch_find(self, entity, pk_field, external_field, values):
        raise RuntimeError('connection refused')


class BarrierLookupStore(DictLookupStore):
    """ Every lookup waits until `parties` lookups are running at the same time """

    def __init__(self, data, parties):
        super(BarrierLookupStore, self).__init__(data)
        self.barrier = threading.Barrier(parties, timeout=5)

    def batch_find(self, entity, pk_field, external_field, values):
        self.barrier.wait()
        return super(BarrierLookupStore, self).batch_find(entity, pk_field, external_field, values)


class ProjectorTest(unittest.TestCase):
    """ Test ForeignKeyProjector """

    longMessage = True
    maxDiff = None

    def test_foreign_keys(self):
        """ Foreign keys of the base rows """
        store = RecordingLookupStore(LOOKUP_DATA)
        rows = [
            {'id': 1, 'name': 'Laptop', 'owner_id': 7},
            {'id': 2, 'name': 'Phone', 'owner_id': 8},
            {'id': 3, 'name': 'Monitor', 'owner_id': 7},
            {'id': 4, 'name': 'Chair', 'owner_id': None},
            {'id': 5, 'name': 'Lamp', 'owner_id': 99},
        ]
        original = copy.deepcopy(rows)

        result = project(rows, catalog, 'Product', store, [USER_MAPPING])
        self.assertEqual(result, [
            {'id': 1, 'name': 'Laptop', 'owner_id': 'ext-007'},
            {'id': 2, 'name': 'Phone', 'owner_id': 'ext-008'},
            {'id': 3, 'name': 'Monitor', 'owner_id': 'ext-007'},
            {'id': 4, 'name': 'Chair', 'owner_id': None},
            {'id': 5, 'name': 'Lamp', 'owner_id': 99},  # not found: left as it is
        ])

        # One batched lookup, distinct values
        self.assertEqual(store.calls, [('User', 'id', 'external_id', [7, 8, 99])])

        # Input rows are never modified
        self.assertEqual(rows, original)

    def test_no_lookups(self):
        """ Nothing to look up: the store is never called """
        rows = [{'id': 1, 'owner_id': None}, {'id': 2}]
        self.assertEqual(project(rows, catalog, 'Product', FailingLookupStore(), [USER_MAPPING]), rows)

        # No mappings at all
        rows = [{'id': 1, 'owner_id': 7}]
        self.assertEqual(project(rows, catalog, 'Product', FailingLookupStore(), []), rows)

    def test_nested(self):
        """ Nested objects of included relations """
        store = RecordingLookupStore(LOOKUP_DATA)
        includes = IncludeGraph.parse(catalog, 'Product', ['owner'])
        rows = [
            # External id is loaded: renamed
            {'id': 1, 'owner_id': 7, 'owner': {'id': 7, 'external_id': 'ext-007', 'name': 'Alice', 'company_id': 1}},
            # External id is not loaded: looked up
            {'id': 2, 'owner_id': 8, 'owner': {'id': 8, 'name': 'Bob', 'company_id': 2}},
            # No owner
            {'id': 4, 'owner_id': None, 'owner': None},
        ]

        result = project(rows, catalog, 'Product', store, [USER_MAPPING], includes=includes)
        self.assertEqual(result, [
            {'id': 1, 'owner_id': 'ext-007', 'owner': {'id': 'ext-007', 'name': 'Alice', 'company_id': 1}},
            {'id': 2, 'owner_id': 'ext-008', 'owner': {'id': 'ext-008', 'name': 'Bob', 'company_id': 2}},
            {'id': 4, 'owner_id': None, 'owner': None},
        ])

        # Still one lookup
        self.assertEqual(store.calls, [('User', 'id', 'external_id', [7, 8])])

        # Another mapping for the nested object: rewritten independently
        includes = IncludeGraph.parse(catalog, 'Product', ['owner.company'])
        rows = [
            {'id': 1, 'owner_id': 7, 'owner': {'id': 7, 'external_id': 'ext-007', 'company_id': 1,
                                               'company': {'id': 1, 'name': 'Acme'}}},
        ]
        result = project(rows, catalog, 'Product', DictLookupStore(LOOKUP_DATA), [USER_MAPPING, COMPANY_MAPPING],
                         includes=includes)
        self.assertEqual(result, [
            {'id': 1, 'owner_id': 'ext-007', 'owner': {'id': 'ext-007', 'company_id': 'acme',
                                                       'company': {'id': 'acme', 'name': 'Acme'}}},
        ])

    def test_nested_lists(self):
        """ To-many relations """
        includes = IncludeGraph.parse(catalog, 'User', ['products'])
        rows = [
            {'id': 7, 'external_id': 'ext-007', 'products': [{'id': 1, 'owner_id': 7}, {'id': 3, 'owner_id': 7}]},
            {'id': 9, 'external_id': 'ext-009', 'products': []},
        ]

        result = project(rows, catalog, 'User', DictLookupStore(LOOKUP_DATA), [USER_MAPPING], includes=includes)
        self.assertEqual(result, [
            {'id': 'ext-007', 'products': [{'id': 1, 'owner_id': 'ext-007'}, {'id': 3, 'owner_id': 'ext-007'}]},
            {'id': 'ext-009', 'products': []},
        ])

    def test_walks_the_include_graph(self):
        """ Objects that are not in the include graph are not touched """
        rows = [{'id': 1, 'owner_id': 7, 'owner': {'id': 7, 'company_id': 1}}]
        result = project(rows, catalog, 'Product', DictLookupStore(LOOKUP_DATA), [USER_MAPPING, COMPANY_MAPPING])
        self.assertEqual(result, [{'id': 1, 'owner_id': 'ext-007', 'owner': {'id': 7, 'company_id': 1}}])

    def test_id_mapping(self):
        """ The base entity's own external id """
        rows = [{'id': 7, 'external_id': 'ext-007', 'name': 'Alice', 'company_id': 1}]
        result = project(rows, catalog, 'User', FailingLookupStore(), [], id_mapping='external_id')
        self.assertEqual(result, [{'id': 'ext-007', 'name': 'Alice', 'company_id': 1}])

    def test_concurrent_lookups(self):
        """ Lookups for different entities run concurrently """
        includes = IncludeGraph.parse(catalog, 'Product', ['owner'])
        rows = [
            {'id': 1, 'owner_id': 7, 'owner': {'id': 7, 'external_id': 'ext-007', 'company_id': 1}},
            {'id': 2, 'owner_id': 8, 'owner': {'id': 8, 'external_id': 'ext-008', 'company_id': 2}},
        ]

        # Both lookups have to be in flight at the same time, or the barrier breaks
        store = BarrierLookupStore(LOOKUP_DATA, parties=2)
        with ThreadPoolExecutor(2) as executor:
            projector = ForeignKeyProjector(catalog, 'Product', store, [USER_MAPPING, COMPANY_MAPPING],
                                            includes=includes, executor=executor)
            result = projector.project(rows)

        self.assertEqual(result, [
            {'id': 1, 'owner_id': 'ext-007', 'owner': {'id': 'ext-007', 'company_id': 'acme'}},
            {'id': 2, 'owner_id': 'ext-008', 'owner': {'id': 'ext-008', 'company_id': 'globex'}},
        ])

    def test_lookup_failure(self):
        """ A failed lookup fails the whole projection """
        rows = [{'id': 1, 'owner_id': 7}]

        with self.assertRaises(LookupInfrastructureError) as e:
            project(rows, catalog, 'Product', FailingLookupStore(), [USER_MAPPING])
        self.assertEqual(e.exception.entity, 'User')
        self.assertIsInstance(e.exception.__cause__, RuntimeError)
        self.assertIsInstance(e.exception, InfrastructureError)
        self.assertEqual(e.exception.status_code, 500)
        self.assertEqual(e.exception.public_message, 'Internal server error')

        # Concurrent: same thing
        includes = IncludeGraph.parse(catalog, 'Product', ['owner'])
        rows = [{'id': 1, 'owner_id': 7, 'owner': {'id': 7, 'company_id': 1}}]
        with ThreadPoolExecutor(2) as executor:
            with self.assertRaises(LookupInfrastructureError):
                project(rows, catalog, 'Product', FailingLookupStore(), [USER_MAPPING, COMPANY_MAPPING],
                        includes=includes, executor=executor)
