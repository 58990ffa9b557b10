# newsgraph -- links/schema.py
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


import functools
import logging
import operator
import re

from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import URLValidator
from django.db.models import Q

import graphene
from graphene_django import DjangoObjectType

from links.models import LinkModel, VoteModel
from newsgraph.errors import ValidationError, store_errors
from newsgraph.store import normalize_id
from users.schema import User


logger = logging.getLogger(__name__)

LINK_TOPIC = 'Link'


# ========== Vote ==========

class Vote(DjangoObjectType):
    class Meta:
        model = VoteModel
        fields = ('id', )

    id = graphene.ID(required=True)
    # null when the vote was cast anonymously
    user = graphene.Field(User)
    link = graphene.NonNull(lambda: Link)

    def resolve_id(parent, info):
        return normalize_id(parent)

    @store_errors('Vote.user')
    async def resolve_user(parent, info):
        return await info.context.loaders.user.load(parent.user_id)

    @store_errors('Vote.link')
    async def resolve_link(parent, info):
        return await info.context.loaders.link.load(parent.link_id)


class CreateVote(graphene.Mutation):
    # mutation {
    #   createVote(linkId: "1") {
    #     id
    #     link { votes { id } }
    #   }
    # }
    class Arguments:
        link_id = graphene.ID(required=True)

    Output = Vote

    @store_errors('Mutation.createVote')
    async def mutate(root, info, link_id):
        link = await info.context.loaders.link.load(link_id)
        if link is None:
            raise ValidationError('Vote validation error: link not found.', 'linkId')
        # Anonymous votes are allowed, and nothing stops a user voting twice for the same link.
        user = info.context.user
        return await info.context.store.votes.insert_one({
            'user_id': user.pk if user else None,
            'link_id': link.pk,
        })


# ========== Link ==========

class Link(DjangoObjectType):
    class Meta:
        model = LinkModel
        fields = ('id', 'url', 'description')

    id = graphene.ID(required=True)
    # null for links created without an authenticated user
    posted_by = graphene.Field(User)
    votes = graphene.NonNull(graphene.List(graphene.NonNull(Vote)))

    def resolve_id(parent, info):
        return normalize_id(parent)

    @store_errors('Link.postedBy')
    async def resolve_posted_by(parent, info):
        return await info.context.loaders.user.load(parent.posted_by_id)

    @store_errors('Link.votes')
    async def resolve_votes(parent, info):
        return await info.context.store.votes.find(Q(link_id=parent.pk))


class LinkFilter(graphene.InputObjectType):
    """The input object for filtered allLinks queries. The field names are the Graphcool-style
    ones the front-end tutorial uses, so they are given explicitly rather than camel-cased.
    """
    OR = graphene.List(graphene.NonNull(lambda: LinkFilter))
    description_contains = graphene.String(name='description_contains')
    url_contains = graphene.String(name='url_contains')


def build_filters(filter):
    """Flatten a LinkFilter tree into a list of leaf clauses, to be OR'ed together.

    Each clause is a dict of ORM lookups which must all match, e.g.
        { 'description_contains': 'Query', 'OR': [{ 'url_contains': 'apollo' }] }
    flattens to
        [{ 'description__regex': 'Query' }, { 'url__regex': 'apollo' }]
    Values match as case-sensitive substrings, escaped into regular expressions. A node with
    neither description_contains nor url_contains contributes no clause of its own.
    """
    clause = {}
    if filter.get('description_contains'):
        clause['description__regex'] = re.escape(filter['description_contains'])
    if filter.get('url_contains'):
        clause['url__regex'] = re.escape(filter['url_contains'])
    clauses = [clause] if clause else []
    for child in filter.get('OR') or ():
        clauses.extend(build_filters(child))
    return clauses


def links_query(filter):
    """Return the Q object for a LinkFilter, or None when it matches every link."""
    if not filter:
        return None
    clauses = build_filters(filter)
    if not clauses:
        return None
    return functools.reduce(operator.or_, (Q(**clause) for clause in clauses))


def validate_page_argument(name, value):
    if value is not None and value < 0:
        raise ValidationError('{} must not be negative.'.format(name), name)


# Django's URLValidator wants an absolute URL with a scheme and a host.
validate_url = URLValidator()


def assert_valid_link(url):
    try:
        validate_url(url)
    except DjangoValidationError:
        raise ValidationError('Link validation error: invalid url.', 'url')


class CreateLink(graphene.Mutation):
    # mutation {
    #   createLink(url: "http://example.com", description: "New Link") {
    #     id
    #     postedBy { id }
    #   }
    # }
    class Arguments:
        url = graphene.String(required=True)
        description = graphene.String(required=True)

    Output = Link

    @store_errors('Mutation.createLink')
    async def mutate(root, info, url, description):
        # Nothing reaches the store until the url has been checked.
        assert_valid_link(url)
        user = info.context.user
        link = await info.context.store.links.insert_one({
            'url': url,
            'description': description,
            'posted_by_id': user.pk if user else None,
        })
        info.context.loaders.link.prime(link.pk, link)
        info.context.event_bus.publish(LINK_TOPIC, {'mutation': 'CREATED', 'node': link})
        return link


# ========== Link subscription ==========

class ModelMutationType(graphene.Enum):
    class Meta:
        name = '_ModelMutationType'

    CREATED = 'CREATED'
    UPDATED = 'UPDATED'
    DELETED = 'DELETED'


class LinkSubscriptionFilter(graphene.InputObjectType):
    mutation_in = graphene.List(graphene.NonNull(ModelMutationType), name='mutation_in')


class LinkSubscriptionPayload(graphene.ObjectType):
    mutation = graphene.Field(ModelMutationType, required=True)
    node = graphene.Field(Link)


def mutation_kinds(filter):
    """Return the set of mutation kind names a LinkSubscriptionFilter accepts, or None for all."""
    kinds = filter and filter.get('mutation_in')
    if not kinds:
        return None
    # graphene may hand over enum members or their values
    return {getattr(kind, 'value', kind) for kind in kinds}


def payload_matches(kinds, payload):
    return payload['mutation'] in kinds


# ========== schema structure ==========

class Query(object):
    all_links = graphene.NonNull(
        graphene.List(graphene.NonNull(Link)),
        filter=graphene.Argument(LinkFilter),
        skip=graphene.Int(),
        first=graphene.Int(),
    )

    @store_errors('Query.allLinks')
    async def resolve_all_links(root, info, **args):
        skip, first = args.get('skip'), args.get('first')
        validate_page_argument('skip', skip)
        validate_page_argument('first', first)
        query = links_query(args.get('filter'))
        return await info.context.store.links.find(query, skip=skip, limit=first)


class Mutation(object):
    create_link = CreateLink.Field()
    create_vote = CreateVote.Field()


class Subscription(object):
    # subscription { Link(filter: { mutation_in: [CREATED] }) { mutation node { url } } }
    link = graphene.Field(LinkSubscriptionPayload, name='Link',
                          filter=graphene.Argument(LinkSubscriptionFilter))

    def subscribe_link(root, info, **args):
        kinds = mutation_kinds(args.get('filter'))
        where = None
        if kinds is not None:
            where = functools.partial(payload_matches, kinds)
        logger.debug('Opening Link subscription (mutation_in=%s)', kinds)
        return info.context.event_bus.subscribe(LINK_TOPIC, where=where)
