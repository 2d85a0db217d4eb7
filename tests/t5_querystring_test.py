import unittest

from filtersql import QueryAssembler, SqlAlchemyQueryExecutor, parse_querystring
from filtersql.exc import UnknownFieldError

from . import models
from .models import catalog


class MultiDict(dict):
    """ A dict of lists, like the ones web frameworks give you """

    def items(self, multi=False):
        if not multi:
            return [(k, v[0]) for k, v in super(MultiDict, self).items()]
        return [(k, v) for k, values in super(MultiDict, self).items() for v in values]


class QueryStringTest(unittest.TestCase):
    """ Test the query string grammar """

    longMessage = True
    maxDiff = None

    def test_parse(self):
        qs = parse_querystring('category=electronics&score:gte=5&order_by=-price,name&order_dir=DESC&page=2&page_size=20')
        self.assertEqual(qs.filtering, {'category': 'electronics', 'score': {'gte': '5'}})
        self.assertEqual(qs.ordering, '-price,name')
        self.assertEqual(qs.order_dir, 'DESC')
        self.assertEqual(qs.paging, {'page': '2', 'size': '20'})
        self.assertEqual(qs.filters_echo, {'category': 'electronics', 'score:gte': '5'})

        # Nothing
        qs = parse_querystring('')
        self.assertEqual(qs.filtering, None)
        self.assertEqual(qs.ordering, None)
        self.assertEqual(qs.order_dir, None)
        self.assertEqual(qs.paging, {'page': None, 'size': None})
        self.assertEqual(qs.filters_echo, {})

        # Leading "?", blank values, url-encoding
        qs = parse_querystring('?name=&email:ends_with=%40example.com')
        self.assertEqual(qs.filtering, {'name': '', 'email': {'ends_with': '@example.com'}})

        # The last colon separates the operator
        qs = parse_querystring('meta:key:eq=1')
        self.assertEqual(qs.filtering, {'meta:key': {'eq': '1'}})

    def test_repeated(self):
        """ The same field twice: every condition on its own """
        qs = parse_querystring('price:gte=100&price:lte=500&category=electronics')
        self.assertEqual(qs.filtering, {'and': [
            {'price': {'gte': '100'}},
            {'price': {'lte': '500'}},
            {'category': 'electronics'},
        ]})
        self.assertEqual(qs.filters_echo, {'price:gte': '100', 'price:lte': '500', 'category': 'electronics'})

        # Same key twice
        qs = parse_querystring([('tag', 'a'), ('tag', 'b')])
        self.assertEqual(qs.filtering, {'and': [{'tag': 'a'}, {'tag': 'b'}]})
        self.assertEqual(qs.filters_echo, {'tag': ['a', 'b']})

    def test_inputs(self):
        """ Whatever a web framework gives us """
        expected = {'and': [{'score': {'in': '1,2'}}, {'name': 'a'}, {'name': 'b'}]}

        # dict with lists
        qs = parse_querystring({'score:in': '1,2', 'name': ['a', 'b']})
        self.assertEqual(qs.filtering, expected)

        # multi-dict
        qs = parse_querystring(MultiDict({'score:in': ['1,2'], 'name': ['a', 'b'], 'page': ['3']}))
        self.assertEqual(qs.filtering, expected)
        self.assertEqual(qs.paging, {'page': '3', 'size': None})

        # list of pairs
        qs = parse_querystring([('score:in', '1,2'), ('name', 'a'), ('name', 'b')])
        self.assertEqual(qs.filtering, expected)

    def test_prefix(self):
        """ Control parameters with a prefix """
        qs = parse_querystring('api:page=2&page=5&api:order_by=name&api:debug=1', prefix='api:')
        self.assertEqual(qs.paging, {'page': '2', 'size': None})
        self.assertEqual(qs.ordering, 'name')
        # Unprefixed: a field
        self.assertEqual(qs.filtering, {'page': '5'})
        # Other prefixed parameters are ignored
        self.assertNotIn('api:debug', qs.filters_echo)


class QueryStringQueryTest(unittest.TestCase):
    """ Test QueryAssembler with query strings """

    longMessage = True
    maxDiff = None

    @classmethod
    def setUpClass(cls):
        cls.engine, cls.Session = models.get_working_db_for_tests()

    def execute(self, params, expected_status=200, entity='Product', **settings):
        ssn = self.Session()
        self.addCleanup(ssn.close)

        qa = QueryAssembler(entity, catalog, settings)
        envelope, status = qa.execute_querystring(SqlAlchemyQueryExecutor(ssn, catalog), params)
        self.assertEqual(status, expected_status, msg=repr(envelope))
        return envelope

    def assertIds(self, params, expected_ids, **settings):
        envelope = self.execute(params, **settings)
        self.assertEqual([row['id'] for row in envelope['data']], expected_ids, msg=repr(params))
        return envelope

    def test_filtering(self):
        self.assertIds('category=electronics&price:lt=300&order_by=-price', [2, 1])
        self.assertIds('price:gte=100&price:lte=500', [2, 4])
        self.assertIds('score:in=1,10', [1, 3])
        self.assertIds('in_stock=false', [3])
        self.assertIds('name:icontains=o', [1, 2, 3])
        self.assertIds('created:lt=2024-02-01T00:00:00Z', [1])

        # Unknown operators are a no-op
        self.assertIds('price:future_op=1', [1, 2, 3, 4])

        # Echo
        envelope = self.execute('category=electronics&price:lt=300', meta_show_filters=True)
        self.assertEqual(envelope['meta']['filters'], {'category': 'electronics', 'price:lt': '300'})

        # Disabled
        self.assertIds('category=electronics', [1, 2, 3, 4], allow_filtering=False)

    def test_ordering_and_paging(self):
        self.assertIds('order_by=name&order_dir=DESC', [2, 3, 1, 4])
        self.assertIds('order_by=-score&page=2&page_size=2', [4, 1])

        envelope = self.execute('page=2&page_size=3')
        self.assertEqual(envelope['meta'], {'page': 2, 'page_size': 3, 'total_pages': 2, 'count': 4})

        # Invalid paging: defaults
        envelope = self.execute('page=-1&page_size=lots')
        self.assertEqual(envelope['meta'], {'page': 1, 'page_size': 100, 'total_pages': 1, 'count': 4})

        # Disabled ordering
        self.assertIds('order_by=-id', [1, 2, 3, 4], allow_ordering=False)

    def test_prefix(self):
        envelope = self.execute('api:page=2&api:page_size=1&api:order_by=-id&score:lte=5',
                                querystring_prefix='api:')
        self.assertEqual([row['id'] for row in envelope['data']], [2])
        self.assertEqual(envelope['meta'], {'page': 2, 'page_size': 1, 'total_pages': 3, 'count': 3})

        # Without the prefix, `page` is just an unknown field
        self.execute('page=2', expected_status=400, querystring_prefix='api:')

    def test_errors(self):
        self.execute('score=abc', expected_status=400)
        self.execute('bogus=1', expected_status=400)
        self.execute('order_by=bogus', expected_status=400)
        self.execute('order_by=name&order_dir=sideways', expected_status=400)

        with self.assertRaises(UnknownFieldError):
            QueryAssembler('Product', catalog).compile_querystring('bogus:eq=1')
