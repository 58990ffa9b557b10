# newsgraph -- newsgraph/tests.py
#
# Copyright © 2017 Sean Bolton.
#
# Permission is hereby granted, free of charge, to any person obtaining
# a copy of this software and associated documentation files (the
# "Software"), to deal in the Software without restriction, including
# without limitation the rights to use, copy, modify, merge, publish,
# distribute, sublicense, and/or sell copies of the Software, and to
# permit persons to whom the Software is furnished to do so, subject to
# the following conditions:
#
# The above copyright notice and this permission notice shall be
# included in all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND,
# EXPRESS OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF
# MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND
# NONINFRINGEMENT. IN NO EVENT SHALL THE AUTHORS OR COPYRIGHT HOLDERS BE
# LIABLE FOR ANY CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER IN AN ACTION
# OF CONTRACT, TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN CONNECTION
# WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE SOFTWARE.


import asyncio
import importlib
import os
from types import SimpleNamespace
from unittest import mock

from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase, override_settings
from graphql import ExecutionResult
from graphql.error import GraphQLError

from links.models import LinkModel
from newsgraph import settings as project_settings
from newsgraph.conf import newsgraph_setting
from newsgraph.errors import (MASKED_MESSAGE, DuplicateKeyError, StoreError, ValidationError,
                              format_error)
from newsgraph.loaders import BatchLoader
from newsgraph.pubsub import EventBus
from newsgraph.store import Collection, Store, normalize_id
from newsgraph.utils import quiet_logging, unquiet_logging
from newsgraph.views import event_stream, format_event
from users.models import UserModel


def setUpModule():
    quiet_logging()

def tearDownModule():
    unquiet_logging()


# ========== utility ==========

class FakeCollection(object):
    """Stands in for Collection.find_by_ids, recording each bulk fetch."""
    def __init__(self, documents, fail=False):
        self.documents = {str(d['_id']): d for d in documents}
        self.fail = fail
        self.calls = []

    async def find_by_ids(self, ids):
        self.calls.append(sorted(ids))
        if self.fail:
            raise StoreError('the store is down')
        # deliberately not in key order
        return [self.documents[id] for id in reversed(ids) if id in self.documents]


def documents():
    return [{'_id': 1, 'name': 'Ada'}, {'_id': 2, 'name': 'Grace'}, {'_id': 3, 'name': 'Barbara'}]


# ========== id normalization ==========

class NormalizeIdTests(SimpleTestCase):
    def test_prefers_native_id(self):
        """a document's '_id' wins over an application-assigned 'id'"""
        self.assertEqual(normalize_id({'_id': 7, 'id': 'other'}), '7')

    def test_falls_back_to_assigned_id(self):
        self.assertEqual(normalize_id({'id': 'abc'}), 'abc')

    def test_model_instance(self):
        self.assertEqual(normalize_id(UserModel(pk=12, name='x', email='x@y.z')), '12')

    def test_no_id(self):
        self.assertIsNone(normalize_id(None))
        self.assertIsNone(normalize_id({}))
        self.assertIsNone(normalize_id(UserModel(name='unsaved')))


# ========== Batched Loader ==========

class BatchLoaderTests(SimpleTestCase):
    async def test_duplicate_keys_coalesce(self):
        """duplicate keys in one batch window become one bulk fetch over the distinct keys, run
        as soon as dispatch() is called
        """
        users = FakeCollection(documents())
        loader = BatchLoader(users.find_by_ids)
        futures = [loader.load(key) for key in (1, '1', 2, 2, '3')]
        await loader.dispatch()
        self.assertEqual(users.calls, [['1', '2', '3']])
        names = [f.result()['name'] for f in futures]
        self.assertEqual(names, ['Ada', 'Ada', 'Grace', 'Grace', 'Barbara'])
        # two representations of the same id share one result
        self.assertIs(futures[0].result(), futures[1].result())

    async def test_auto_dispatch(self):
        """loads issued together are fetched together without an explicit dispatch()"""
        users = FakeCollection(documents())
        loader = BatchLoader(users.find_by_ids)
        ada, grace, ada_again = await asyncio.gather(
            loader.load(1), loader.load(2), loader.load('1'))
        self.assertEqual(users.calls, [['1', '2']])
        self.assertEqual(grace['name'], 'Grace')
        self.assertIs(ada, ada_again)

    async def test_results_are_cached(self):
        users = FakeCollection(documents())
        loader = BatchLoader(users.find_by_ids)
        first = await loader.load(3)
        second = await loader.load('3')
        self.assertIs(first, second)
        self.assertEqual(len(users.calls), 1)

    async def test_missing_key_resolves_to_none(self):
        users = FakeCollection(documents())
        loader = BatchLoader(users.find_by_ids)
        self.assertIsNone(await loader.load(99))

    async def test_none_key(self):
        """load(None) resolves to None without a fetch (e.g. an anonymous link's author)"""
        users = FakeCollection(documents())
        loader = BatchLoader(users.find_by_ids)
        self.assertIsNone(await loader.load(None))
        self.assertEqual(users.calls, [])

    async def test_batch_failure(self):
        """every caller in a failed batch sees the failure, and failures are not cached"""
        users = FakeCollection(documents(), fail=True)
        loader = BatchLoader(users.find_by_ids)
        results = await asyncio.gather(loader.load(1), loader.load(2), return_exceptions=True)
        self.assertEqual(len(users.calls), 1)
        for result in results:
            self.assertIsInstance(result, StoreError)
        users.fail = False
        self.assertEqual((await loader.load(1))['name'], 'Ada')
        self.assertEqual(len(users.calls), 2)

    async def test_max_batch_size(self):
        users = FakeCollection(documents())
        loader = BatchLoader(users.find_by_ids, max_batch_size=2)
        await loader.load_many([1, 2, 3])
        self.assertEqual(sorted(users.calls), [['1', '2'], ['3']])

    async def test_loaders_do_not_share_cache(self):
        """each request gets its own loader, and a cached entity never crosses over"""
        users = FakeCollection(documents())
        first = BatchLoader(users.find_by_ids)
        second = BatchLoader(users.find_by_ids)
        await first.load(1)
        await second.load(1)
        self.assertEqual(users.calls, [['1'], ['1']])

    async def test_prime_and_clear(self):
        users = FakeCollection(documents())
        loader = BatchLoader(users.find_by_ids)
        primed = {'_id': 5, 'name': 'Primed'}
        loader.prime(5, primed)
        self.assertIs(await loader.load('5'), primed)
        self.assertEqual(users.calls, [])
        await loader.load(1)
        loader.clear(1)
        await loader.load(1)
        self.assertEqual(users.calls, [['1'], ['1']])
        loader.clear()
        self.assertIsNone(await loader.load(5))


# ========== Event Bus ==========

async def next_payload(subscription, timeout=1):
    return await asyncio.wait_for(subscription.__anext__(), timeout)


class EventBusTests(SimpleTestCase):
    async def test_publish_order(self):
        """every subscriber sees payloads in the order they were published"""
        bus = EventBus()
        first, second = bus.subscribe('Link'), bus.subscribe('Link')
        self.assertEqual(bus.publish('Link', 'P1'), 2)
        self.assertEqual(bus.publish('Link', 'P2'), 2)
        for subscription in (first, second):
            self.assertEqual(await next_payload(subscription), 'P1')
            self.assertEqual(await next_payload(subscription), 'P2')

    async def test_unsubscribe(self):
        """a closed subscription gets nothing more, and the others carry on"""
        bus = EventBus()
        leaving, staying = bus.subscribe('Link'), bus.subscribe('Link')
        await leaving.aclose()
        self.assertEqual(bus.subscriber_count('Link'), 1)
        self.assertEqual(bus.publish('Link', 'P1'), 1)
        self.assertEqual(await next_payload(staying), 'P1')
        with self.assertRaises(StopAsyncIteration):
            await next_payload(leaving)

    async def test_close_wakes_waiting_subscriber(self):
        bus = EventBus()
        subscription = bus.subscribe('Link')
        waiting = asyncio.ensure_future(next_payload(subscription))
        await asyncio.sleep(0)
        subscription.close()
        with self.assertRaises(StopAsyncIteration):
            await waiting

    async def test_no_replay(self):
        """payloads published before a subscription started are not delivered to it"""
        bus = EventBus()
        self.assertEqual(bus.publish('Link', 'early'), 0)
        subscription = bus.subscribe('Link')
        bus.publish('Link', 'late')
        self.assertEqual(await next_payload(subscription), 'late')

    async def test_topics_are_independent(self):
        bus = EventBus()
        links, votes = bus.subscribe('Link'), bus.subscribe('Vote')
        bus.publish('Vote', 'vote')
        bus.publish('Link', 'link')
        self.assertEqual(await next_payload(links), 'link')
        self.assertEqual(await next_payload(votes), 'vote')

    async def test_where(self):
        bus = EventBus()
        created = bus.subscribe('Link', where=lambda p: p['mutation'] == 'CREATED')
        self.assertEqual(bus.publish('Link', {'mutation': 'DELETED'}), 0)
        self.assertEqual(bus.publish('Link', {'mutation': 'CREATED'}), 1)
        self.assertEqual(await next_payload(created), {'mutation': 'CREATED'})

    async def test_async_with(self):
        bus = EventBus()
        async with bus.subscribe('Link'):
            self.assertEqual(bus.subscriber_count('Link'), 1)
        self.assertEqual(bus.subscriber_count('Link'), 0)


# ========== store adapter ==========

class CollectionTests(TestCase):
    def setUp(self):
        self.store = Store()
        self.links = [LinkModel.objects.create(url='http://{}.com'.format(c), description=c)
                      for c in 'abcd']

    async def test_insert_and_find_one(self):
        link = await self.store.links.insert_one({'url': 'http://e.com', 'description': 'e'})
        self.assertIsNotNone(link.pk)
        found = await self.store.links.find_one(url='http://e.com')
        self.assertEqual(found.pk, link.pk)
        self.assertIsNone(await self.store.links.find_one(url='http://nowhere.com'))

    async def test_find_pagination(self):
        page = await self.store.links.find(skip=1, limit=2)
        self.assertEqual([l.description for l in page], ['b', 'c'])
        rest = await self.store.links.find(skip=3)
        self.assertEqual([l.description for l in rest], ['d'])

    async def test_find_by_ids(self):
        ids = [str(self.links[0].pk), self.links[2].pk, 'not-an-id']
        found = await self.store.links.find_by_ids(ids)
        self.assertEqual(sorted(l.description for l in found), ['a', 'c'])
        self.assertEqual(await self.store.links.find_by_ids(['nope']), [])

    async def test_timeout(self):
        collection = Collection(LinkModel, timeout=0.01)
        with self.assertRaises(StoreError):
            await collection._run('find', asyncio.sleep(1))

    async def test_database_error(self):
        async def broken():
            raise DatabaseError('disk I/O error')
        with self.assertRaisesMessage(StoreError, 'disk I/O error'):
            await self.store.links._run('find', broken())

    async def test_duplicate_key(self):
        document = {'name': 'Ada', 'email': 'ada@example.com', 'password': 'x'}
        await self.store.users.insert_one(document)
        with self.assertRaises(DuplicateKeyError):
            await self.store.users.insert_one(dict(document, name='Another Ada'))
        # the failed insert leaves the surrounding transaction usable
        self.assertEqual(await UserModel.objects.acount(), 1)

    def test_canonical_id(self):
        links = self.store.links
        self.assertEqual(links.canonical_id(7), '7')
        self.assertEqual(links.canonical_id('7'), '7')
        self.assertEqual(links.canonical_id('007'), '7')
        self.assertEqual(links.canonical_id('not-an-id'), 'not-an-id')

    async def test_loader_canonical_keys(self):
        """'0<pk>', '<pk>' and <pk> are one key, and each of them finds the entity"""
        links = self.store.links
        loader = BatchLoader(links.find_by_ids, key_fn=links.canonical_id)
        pk = self.links[0].pk
        padded, text, number = await asyncio.gather(
            loader.load('0{}'.format(pk)), loader.load(str(pk)), loader.load(pk))
        self.assertEqual(padded.description, 'a')
        self.assertIs(padded, text)
        self.assertIs(text, number)


# ========== settings ==========

class SettingsTests(SimpleTestCase):
    @override_settings(NEWSGRAPH={})
    def test_defaults(self):
        self.assertEqual(newsgraph_setting('STORE_ERROR_POLICY'), 'raise')
        self.assertEqual(newsgraph_setting('STORE_TIMEOUT'), 10.0)

    @override_settings(NEWSGRAPH={'STORE_ERROR_POLICY': 'ignore'})
    def test_bad_policy(self):
        with self.assertRaises(ValueError):
            newsgraph_setting('STORE_ERROR_POLICY')

    def test_unknown_setting(self):
        with self.assertRaises(KeyError):
            newsgraph_setting('NOT_A_SETTING')

    def test_debug_off_by_default(self):
        """without DJANGO_DEBUG, internal error messages stay masked"""
        try:
            with mock.patch.dict(os.environ):
                os.environ.pop('DJANGO_DEBUG', None)
                self.assertFalse(importlib.reload(project_settings).DEBUG)
                os.environ['DJANGO_DEBUG'] = 'true'
                self.assertTrue(importlib.reload(project_settings).DEBUG)
        finally:
            importlib.reload(project_settings)


# ========== error formatting ==========

class FormatErrorTests(SimpleTestCase):
    def test_validation_error_field(self):
        error = GraphQLError('Link validation error: invalid url.',
                             original_error=ValidationError('Link validation error: invalid url.',
                                                            'url'))
        data = format_error(error)
        self.assertEqual(data['field'], 'url')
        self.assertEqual(data['message'], 'Link validation error: invalid url.')

    def test_plain_graphql_error(self):
        data = format_error(GraphQLError('Cannot query field "foo" on type "Query".'))
        self.assertIsNone(data['field'])
        self.assertIn('Cannot query field', data['message'])

    @override_settings(DEBUG=False)
    def test_store_error_masked(self):
        error = GraphQLError('the store is down', original_error=StoreError('the store is down'))
        self.assertEqual(format_error(error)['message'], MASKED_MESSAGE)

    @override_settings(DEBUG=True)
    def test_store_error_shown_when_debugging(self):
        error = GraphQLError('the store is down', original_error=StoreError('the store is down'))
        self.assertEqual(format_error(error)['message'], 'the store is down')


# ========== HTTP endpoints ==========

class GraphQLViewTests(TestCase):
    async def test_bad_body(self):
        response = await self.async_client.post('/graphql', data='{not json',
                                                content_type='application/json')
        self.assertEqual(response.status_code, 400)
        self.assertIn('invalid JSON', response.json()['errors'][0]['message'])

    async def test_missing_query(self):
        response = await self.async_client.post('/graphql', data={'variables': {}},
                                                content_type='application/json')
        self.assertEqual(response.status_code, 400)

    async def test_query(self):
        await LinkModel.objects.acreate(url='http://a.com', description='A')
        response = await self.async_client.post(
            '/graphql', data={'query': '{ allLinks { url description } }'},
            content_type='application/json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(),
                         {'data': {'allLinks': [{'url': 'http://a.com', 'description': 'A'}]}})

    async def test_validation_error_has_field(self):
        """a validation error reaches the client with the offending field attached"""
        query = '''
          mutation CreateLinkMutation($url: String!) {
            createLink(url: $url, description: "Bad") { id }
          }
        '''
        response = await self.async_client.post(
            '/graphql', data={'query': query, 'variables': {'url': 'not a url'}},
            content_type='application/json')
        payload = response.json()
        self.assertEqual(payload['data'], {'createLink': None})
        self.assertEqual(payload['errors'][0]['field'], 'url')
        self.assertEqual(payload['errors'][0]['path'], ['createLink'])

    async def test_authenticated_request(self):
        user = await UserModel.objects.acreate(name='Ada', email='ada@example.com', password='x')
        query = 'mutation { createLink(url: "http://a.com", description: "A") { postedBy { id } } }'
        response = await self.async_client.post(
            '/graphql', data={'query': query}, content_type='application/json',
            headers={'Authorization': 'bearer token-ada@example.com'})
        self.assertEqual(response.json()['data'],
                         {'createLink': {'postedBy': {'id': str(user.pk)}}})

    async def test_graphiql(self):
        """a browser visiting /graphiql gets the playground"""
        response = await self.async_client.get('/graphiql', headers={'Accept': 'text/html'})
        self.assertEqual(response.status_code, 200)
        self.assertIn(b'graphiql', response.content.lower())

    async def test_graphiql_runs_queries(self):
        """the playground posts its queries back to its own URL"""
        await LinkModel.objects.acreate(url='http://a.com', description='A')
        response = await self.async_client.post(
            '/graphiql', data={'query': '{ allLinks { url } }'}, content_type='application/json',
            headers={'Accept': 'application/json'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'data': {'allLinks': [{'url': 'http://a.com'}]}})

    async def test_no_graphiql_on_api_endpoint(self):
        response = await self.async_client.get('/graphql', headers={'Accept': 'text/html'})
        self.assertEqual(response.status_code, 405)


class SubscriptionViewTests(TestCase):
    async def test_invalid_subscription(self):
        response = await self.async_client.get('/subscriptions', {'query': '{ nope }'})
        self.assertEqual(response.status_code, 400)
        self.assertIn('errors', response.json())

    async def test_missing_query(self):
        response = await self.async_client.get('/subscriptions')
        self.assertEqual(response.status_code, 400)

    async def test_event_stream(self):
        """subscription results become SSE 'next' events, and the source is closed afterwards"""
        class Results(object):
            closed = False

            def __init__(self, results):
                self.results = iter(results)

            def __aiter__(self):
                return self

            async def __anext__(self):
                try:
                    return next(self.results)
                except StopIteration:
                    raise StopAsyncIteration

            async def aclose(self):
                self.closed = True

        cleared = []
        context = SimpleNamespace(
            format_error=format_error,
            loaders=SimpleNamespace(clear=lambda: cleared.append(True)),
        )
        results = Results([ExecutionResult(data={'Link': {'mutation': 'CREATED'}})])
        events = [event async for event in event_stream(results, context)]
        self.assertEqual(events, [
            format_event('next', {'data': {'Link': {'mutation': 'CREATED'}}}),
            'event: complete\ndata: null\n\n',
        ])
        self.assertTrue(results.closed)
        self.assertEqual(cleared, [True])

    async def test_event_stream_cancelled(self):
        """cancelling a waiting stream, as Django does when the client disconnects, ends the
        subscription
        """
        bus = EventBus()
        context = SimpleNamespace(format_error=format_error,
                                  loaders=SimpleNamespace(clear=lambda: None))
        stream = event_stream(bus.subscribe('Link'), context)
        waiting = asyncio.ensure_future(stream.__anext__())
        for _ in range(3):
            await asyncio.sleep(0)
        self.assertEqual(bus.subscriber_count('Link'), 1)
        waiting.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await waiting
        self.assertEqual(bus.subscriber_count('Link'), 0)
