# newsgraph -- links/tests.py
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

from django.test import TestCase, override_settings

import graphene
from graphql import ExecutionResult

from links.models import LinkModel, VoteModel
from links.schema import LINK_TOPIC, build_filters, links_query
from newsgraph.context import RequestContext
from newsgraph.errors import MASKED_MESSAGE, StoreError, format_error
from newsgraph.pubsub import EventBus
from newsgraph.schema import Query, schema
from newsgraph.store import Store
from newsgraph.utils import format_graphql_errors, quiet_logging, unquiet_logging
from users.tests import FAST_HASHERS, create_test_user


def setUpModule():
    quiet_logging()

def tearDownModule():
    unquiet_logging()


# ========== utility functions ==========

def make_context(user=None, store=None, event_bus=None):
    return RequestContext(store or Store(), event_bus or EventBus(), user=user)


async def execute(query, variables=None, context=None):
    return await schema.execute_async(query, variable_values=variables,
                                      context_value=context or make_context())


def create_test_links():
    """Create three links, with descriptions and urls that filters can tell apart."""
    return [
        LinkModel.objects.create(description='The Best Query Language', url='http://graphql.org/'),
        LinkModel.objects.create(description='Awesome GraphQL Client',
                                 url='http://dev.apollodata.com'),
        LinkModel.objects.create(description='Queues and workers', url='http://example.com/q'),
    ]


class CountingStore(Store):
    """A Store that records every bulk user fetch the loaders make."""
    def __init__(self):
        super().__init__()
        self.user_fetches = []
        find_by_ids = self.users.find_by_ids

        async def counting_find_by_ids(ids):
            self.user_fetches.append(sorted(ids))
            return await find_by_ids(ids)
        self.users.find_by_ids = counting_find_by_ids


class BrokenUsersStore(Store):
    """A Store whose users collection cannot be read."""
    def __init__(self):
        super().__init__()

        async def find_by_ids(ids):
            raise StoreError('users are unavailable')
        self.users.find_by_ids = find_by_ids


# ========== GraphQL schema general tests ==========

class RootTests(TestCase):
    def test_root_query(self):
        """Make sure the root query is 'Query'."""
        query = '''
          query RootQueryQuery {
            __schema {
              queryType {
                name  # returns the type of the root query
              }
            }
          }
        '''
        expected = {
            '__schema': {
                'queryType': {
                    'name': 'Query'
                }
            }
        }
        result = graphene.Schema(query=Query).execute(query)
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        assert result.data == expected, '\n'+repr(expected)+'\n'+repr(result.data)

    def test_filter_field_names(self):
        """LinkFilter keeps the Graphcool-style field names the front end sends."""
        query = '''
          query {
            __type(name: "LinkFilter") {
              inputFields { name }
            }
          }
        '''
        result = schema.execute(query)
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        names = sorted(f['name'] for f in result.data['__type']['inputFields'])
        self.assertEqual(names, ['OR', 'description_contains', 'url_contains'])

    def test_subscription_field(self):
        query = '''
          query {
            __schema {
              subscriptionType {
                fields { name }
              }
            }
          }
        '''
        result = schema.execute(query)
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        expected = {'__schema': {'subscriptionType': {'fields': [{'name': 'Link'}]}}}
        self.assertEqual(result.data, expected, msg='\n'+repr(expected)+'\n'+repr(result.data))


# ========== filter flattening ==========

class BuildFiltersTests(TestCase):
    def test_flatten_or(self):
        """a description filter with one OR'ed url filter flattens to two clauses"""
        filter = {'description_contains': 'Query', 'OR': [{'url_contains': 'apollo'}]}
        self.assertEqual(build_filters(filter), [
            {'description__regex': 'Query'},
            {'url__regex': 'apollo'},
        ])

    def test_both_fields_in_one_clause(self):
        filter = {'description_contains': 'Query', 'url_contains': 'graphql'}
        self.assertEqual(build_filters(filter),
                         [{'description__regex': 'Query', 'url__regex': 'graphql'}])

    def test_nested_or(self):
        filter = {'OR': [
            {'url_contains': 'a', 'OR': [{'description_contains': 'b'}]},
            {'OR': [{'OR': [{'url_contains': 'c'}]}]},
        ]}
        self.assertEqual(build_filters(filter), [
            {'url__regex': 'a'},
            {'description__regex': 'b'},
            {'url__regex': 'c'},
        ])

    def test_values_are_escaped(self):
        """filter values are matched literally"""
        self.assertEqual(build_filters({'url_contains': 'a.com/?q=1'}),
                         [{'url__regex': r'a\.com/\?q=1'}])

    def test_empty_filter_matches_everything(self):
        self.assertEqual(build_filters({}), [])
        self.assertIsNone(links_query(None))
        self.assertIsNone(links_query({}))
        self.assertIsNone(links_query({'OR': [{}]}))


# ========== allLinks query tests ==========

class AllLinksTests(TestCase):
    def setUp(self):
        self.links = create_test_links()
        self.query = '''
          query AllLinksTest($filter: LinkFilter, $skip: Int, $first: Int) {
            allLinks(filter: $filter, skip: $skip, first: $first) {
              id
              url
            }
          }
        '''

    def urls(self, result):
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        return [link['url'] for link in result.data['allLinks']]

    async def test_all_links(self):
        result = await execute(self.query)
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        expected = {'allLinks': [{'id': str(l.pk), 'url': l.url} for l in self.links]}
        self.assertEqual(result.data, expected, msg='\n'+repr(expected)+'\n'+repr(result.data))

    async def test_filter_description(self):
        result = await execute(self.query, {'filter': {'description_contains': 'Client'}})
        self.assertEqual(self.urls(result), ['http://dev.apollodata.com'])

    async def test_filter_or(self):
        """(description contains 'Best') OR (url contains 'apollo')"""
        filter = {'description_contains': 'Best', 'OR': [{'url_contains': 'apollo'}]}
        result = await execute(self.query, {'filter': filter})
        self.assertEqual(self.urls(result), ['http://graphql.org/', 'http://dev.apollodata.com'])

    async def test_filter_and_within_clause(self):
        """both conditions in one clause must hold"""
        filter = {'description_contains': 'Que', 'url_contains': 'example'}
        result = await execute(self.query, {'filter': filter})
        self.assertEqual(self.urls(result), ['http://example.com/q'])

    async def test_filter_is_case_sensitive(self):
        """'query' is not a substring of 'The Best Query Language'"""
        result = await execute(self.query, {'filter': {'description_contains': 'query'}})
        self.assertEqual(self.urls(result), [])
        result = await execute(self.query, {'filter': {'url_contains': 'GRAPHQL'}})
        self.assertEqual(self.urls(result), [])

    async def test_filter_special_characters(self):
        result = await execute(self.query, {'filter': {'url_contains': 'example.com/q'}})
        self.assertEqual(self.urls(result), ['http://example.com/q'])
        result = await execute(self.query, {'filter': {'url_contains': '.*'}})
        self.assertEqual(self.urls(result), [])

    async def test_empty_filter(self):
        result = await execute(self.query, {'filter': {}})
        self.assertEqual(len(self.urls(result)), 3)

    async def test_pagination(self):
        """skip and first apply after filtering"""
        result = await execute(self.query, {'skip': 1, 'first': 1})
        self.assertEqual(self.urls(result), ['http://dev.apollodata.com'])
        filter = {'url_contains': 'http'}
        result = await execute(self.query, {'filter': filter, 'skip': 2, 'first': 5})
        self.assertEqual(self.urls(result), ['http://example.com/q'])

    async def test_first_zero(self):
        """first: 0 means a limit of zero"""
        result = await execute(self.query, {'first': 0})
        self.assertEqual(self.urls(result), [])

    async def test_negative_skip(self):
        result = await execute(self.query, {'skip': -1})
        self.assertIsNotNone(result.errors, msg='allLinks should have failed: negative skip')
        self.assertEqual(format_error(result.errors[0])['field'], 'skip')


# ========== createLink mutation tests ==========

CREATE_LINK = '''
  mutation CreateLinkMutation($url: String!, $description: String!) {
    createLink(url: $url, description: $description) {
      id
      url
      description
      postedBy {
        id
      }
    }
  }
'''


@override_settings(PASSWORD_HASHERS=FAST_HASHERS)
class CreateLinkTests(TestCase):
    def setUp(self):
        self.user = create_test_user()
        self.variables = {'url': 'http://example.com', 'description': 'Description'}

    async def test_create_link(self):
        """create a link without an authenticated user"""
        result = await execute(CREATE_LINK, self.variables)
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        link = await LinkModel.objects.aget(description='Description')
        expected = {
            'createLink': {
                'id': str(link.pk),
                'url': 'http://example.com',
                'description': 'Description',
                'postedBy': None,
            }
        }
        self.assertEqual(result.data, expected, msg='\n'+repr(expected)+'\n'+repr(result.data))
        self.assertIsNone(link.posted_by_id)

    async def test_create_link_with_user(self):
        result = await execute(CREATE_LINK, self.variables, make_context(user=self.user))
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        self.assertEqual(result.data['createLink']['postedBy'], {'id': str(self.user.pk)})

    async def test_create_link_invalid_url(self):
        """an invalid url fails validation on 'url', and nothing is stored or published"""
        bus = EventBus()
        subscription = bus.subscribe(LINK_TOPIC)
        self.variables['url'] = 'not a url'
        result = await execute(CREATE_LINK, self.variables, make_context(event_bus=bus))
        self.assertIsNotNone(result.errors, msg='createLink should have failed: invalid url')
        self.assertIn('invalid url', result.errors[0].message)
        self.assertEqual(format_error(result.errors[0])['field'], 'url')
        self.assertEqual(result.data, {'createLink': None})
        self.assertEqual(await LinkModel.objects.acount(), 0)
        bus.publish(LINK_TOPIC, 'marker')
        self.assertEqual(await asyncio.wait_for(subscription.__anext__(), 1), 'marker')

    async def test_create_link_publishes(self):
        bus = EventBus()
        subscription = bus.subscribe(LINK_TOPIC)
        result = await execute(CREATE_LINK, self.variables, make_context(event_bus=bus))
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        event = await asyncio.wait_for(subscription.__anext__(), 1)
        self.assertEqual(event['mutation'], 'CREATED')
        self.assertEqual(str(event['node'].pk), result.data['createLink']['id'])

    async def test_round_trip_id(self):
        """the id createLink returns is the id allLinks reports"""
        result = await execute(CREATE_LINK, self.variables)
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        created_id = result.data['createLink']['id']
        result = await execute('{ allLinks { id url } }')
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        self.assertEqual(result.data['allLinks'], [{'id': created_id, 'url': 'http://example.com'}])


# ========== createVote mutation tests ==========

CREATE_VOTE = '''
  mutation CreateVoteMutation($linkId: ID!) {
    createVote(linkId: $linkId) {
      id
      link {
        id
        votes { id }
      }
      user {
        id
        votes { id }
      }
    }
  }
'''


@override_settings(PASSWORD_HASHERS=FAST_HASHERS)
class CreateVoteTests(TestCase):
    def setUp(self):
        self.link = create_test_links()[0]
        self.link_id = str(self.link.pk)
        self.user = create_test_user()
        self.user_id = str(self.user.pk)

    async def test_create_vote(self):
        result = await execute(CREATE_VOTE, {'linkId': self.link_id},
                               make_context(user=self.user))
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        vote = await VoteModel.objects.aget(link_id=self.link.pk)
        vote_id = str(vote.pk)
        expected = {
            'createVote': {
                'id': vote_id,
                'link': {'id': self.link_id, 'votes': [{'id': vote_id}]},
                'user': {'id': self.user_id, 'votes': [{'id': vote_id}]},
            }
        }
        self.assertEqual(result.data, expected, msg='\n'+repr(expected)+'\n'+repr(result.data))
        self.assertEqual(vote.user_id, self.user.pk)

    async def test_create_vote_anonymous(self):
        result = await execute(CREATE_VOTE, {'linkId': self.link_id})
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        self.assertIsNone(result.data['createVote']['user'])
        self.assertEqual(result.data['createVote']['link']['id'], self.link_id)

    async def test_duplicate_votes_allowed(self):
        """each createVote creates a new vote, even for the same user and link"""
        for _ in range(2):
            result = await execute(CREATE_VOTE, {'linkId': self.link_id},
                                   make_context(user=self.user))
            self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        self.assertEqual(len(result.data['createVote']['link']['votes']), 2)
        self.assertEqual(await VoteModel.objects.acount(), 2)

    async def test_create_vote_padded_id(self):
        """'0<pk>' names the same link as '<pk>'"""
        result = await execute(CREATE_VOTE, {'linkId': '0' + self.link_id})
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        self.assertEqual(result.data['createVote']['link']['id'], self.link_id)

    async def test_create_vote_bad_link(self):
        """a vote must reference an existing link"""
        for link_id in (str(self.link.pk + 1000), 'not-an-id'):
            result = await execute(CREATE_VOTE, {'linkId': link_id})
            self.assertIsNotNone(result.errors, msg='createVote should have failed: bad linkId')
            self.assertIn('link not found', result.errors[0].message)
            self.assertEqual(format_error(result.errors[0])['field'], 'linkId')
            self.assertEqual(result.data, {'createVote': None})
        self.assertEqual(await VoteModel.objects.acount(), 0)


# ========== relation tests ==========

@override_settings(PASSWORD_HASHERS=FAST_HASHERS)
class RelationTests(TestCase):
    def setUp(self):
        self.ada = create_test_user(name='Ada', email='ada@example.com')
        self.grace = create_test_user(name='Grace', email='grace@example.com')
        self.links = [
            LinkModel.objects.create(url='http://a.com', description='a', posted_by=self.ada),
            LinkModel.objects.create(url='http://b.com', description='b', posted_by=self.grace),
            LinkModel.objects.create(url='http://c.com', description='c', posted_by=self.ada),
            LinkModel.objects.create(url='http://d.com', description='d'),
        ]
        VoteModel.objects.create(link=self.links[0], user=self.grace)
        VoteModel.objects.create(link=self.links[0])

    async def test_posted_by_is_batched(self):
        """every author in an allLinks result is fetched in one bulk query"""
        store = CountingStore()
        result = await execute('{ allLinks { postedBy { name } } }',
                               context=make_context(store=store))
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        names = [l['postedBy'] and l['postedBy']['name'] for l in result.data['allLinks']]
        self.assertEqual(names, ['Ada', 'Grace', 'Ada', None])
        self.assertEqual(store.user_fetches, [sorted([str(self.ada.pk), str(self.grace.pk)])])

    async def test_votes_on_link(self):
        query = '''
          query {
            allLinks(first: 1) {
              votes {
                user { name }
                link { url }
              }
            }
          }
        '''
        result = await execute(query)
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        expected = {
            'allLinks': [{
                'votes': [
                    {'user': {'name': 'Grace'}, 'link': {'url': 'http://a.com'}},
                    {'user': None, 'link': {'url': 'http://a.com'}},
                ]
            }]
        }
        self.assertEqual(result.data, expected, msg='\n'+repr(expected)+'\n'+repr(result.data))

    async def test_email_is_exposed_password_is_not(self):
        result = await execute('{ allLinks(first: 1) { postedBy { email password } } }')
        self.assertIsNotNone(result.errors, msg='User.password should not be queryable')
        result = await execute('{ allLinks(first: 1) { postedBy { email } } }')
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        self.assertEqual(result.data['allLinks'][0]['postedBy'], {'email': 'ada@example.com'})


# ========== store error policy tests ==========

@override_settings(PASSWORD_HASHERS=FAST_HASHERS)
class StoreErrorPolicyTests(TestCase):
    def setUp(self):
        user = create_test_user()
        LinkModel.objects.create(url='http://a.com', description='a', posted_by=user)
        self.query = '{ allLinks { url postedBy { name } } }'

    @override_settings(NEWSGRAPH={'STORE_ERROR_POLICY': 'raise'})
    async def test_raise(self):
        """a store failure becomes a GraphQL error on the failing field"""
        result = await execute(self.query, context=make_context(store=BrokenUsersStore()))
        self.assertIsNotNone(result.errors, msg='postedBy should have failed')
        self.assertEqual(result.errors[0].path, ['allLinks', 0, 'postedBy'])
        self.assertIsInstance(result.errors[0].original_error, StoreError)
        self.assertEqual(format_error(result.errors[0])['message'], MASKED_MESSAGE)
        self.assertEqual(result.data, {'allLinks': [{'url': 'http://a.com', 'postedBy': None}]})

    @override_settings(NEWSGRAPH={'STORE_ERROR_POLICY': 'null'})
    async def test_null(self):
        """with the 'null' policy a store failure is logged and the field resolves to null"""
        result = await execute(self.query, context=make_context(store=BrokenUsersStore()))
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        self.assertEqual(result.data, {'allLinks': [{'url': 'http://a.com', 'postedBy': None}]})


# ========== Link subscription tests ==========

SUBSCRIBE_LINKS = '''
  subscription {
    Link {
      mutation
      node {
        url
        postedBy { name }
      }
    }
  }
'''


@override_settings(PASSWORD_HASHERS=FAST_HASHERS)
class LinkSubscriptionTests(TestCase):
    def setUp(self):
        self.user = create_test_user(name='Ada', email='ada@example.com')
        self.bus = EventBus()

    async def subscribe(self, query=SUBSCRIBE_LINKS):
        results = await schema.subscribe(query, context_value=make_context(event_bus=self.bus))
        self.assertNotIsInstance(results, ExecutionResult,
                                 msg=getattr(results, 'errors', None))
        return results

    async def test_subscription_receives_created_links(self):
        results = await self.subscribe()
        self.assertEqual(self.bus.subscriber_count(LINK_TOPIC), 1)
        variables = {'url': 'http://example.com', 'description': 'Description'}
        result = await execute(CREATE_LINK, variables,
                               make_context(user=self.user, event_bus=self.bus))
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        event = await asyncio.wait_for(results.__anext__(), 1)
        self.assertIsNone(event.errors, msg=format_graphql_errors(event.errors))
        expected = {
            'Link': {
                'mutation': 'CREATED',
                'node': {'url': 'http://example.com', 'postedBy': {'name': 'Ada'}},
            }
        }
        self.assertEqual(event.data, expected, msg='\n'+repr(expected)+'\n'+repr(event.data))
        await results.aclose()
        self.assertEqual(self.bus.subscriber_count(LINK_TOPIC), 0)

    async def test_subscribers_see_same_order(self):
        first, second = await self.subscribe(), await self.subscribe()
        for url in ('http://one.com', 'http://two.com'):
            result = await execute(CREATE_LINK, {'url': url, 'description': url},
                                   make_context(event_bus=self.bus))
            self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        for results in (first, second):
            urls = []
            for _ in range(2):
                event = await asyncio.wait_for(results.__anext__(), 1)
                urls.append(event.data['Link']['node']['url'])
            self.assertEqual(urls, ['http://one.com', 'http://two.com'])
            await results.aclose()

    async def test_mutation_in_filter(self):
        query = '''
          subscription {
            Link(filter: { mutation_in: [UPDATED, DELETED] }) {
              mutation
            }
          }
        '''
        results = await self.subscribe(query)
        self.assertEqual(self.bus.publish(LINK_TOPIC, {'mutation': 'CREATED', 'node': None}), 0)
        self.assertEqual(self.bus.publish(LINK_TOPIC, {'mutation': 'DELETED', 'node': None}), 1)
        event = await asyncio.wait_for(results.__anext__(), 1)
        self.assertEqual(event.data, {'Link': {'mutation': 'DELETED'}})
        await results.aclose()
