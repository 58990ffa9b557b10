# newsgraph -- newsgraph/store.py
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
import logging
from collections.abc import Mapping

from asgiref.sync import sync_to_async
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError, IntegrityError, transaction

from newsgraph.conf import newsgraph_setting
from newsgraph.errors import DuplicateKeyError, StoreError


logger = logging.getLogger(__name__)


# ========== ids ==========

def normalize_id(entity):
    """Return the canonical, client-facing id of a stored entity as a string.

    The store-native id (a model's pk, or '_id' in a plain document) is preferred; an
    application-assigned 'id' is the fallback. Returns None for None or an entity with no id.
    """
    if entity is None:
        return None
    if isinstance(entity, Mapping):
        native, assigned = entity.get('_id'), entity.get('id')
    else:
        native, assigned = getattr(entity, 'pk', None), getattr(entity, 'id', None)
    value = native if native is not None else assigned
    return None if value is None else str(value)


# ========== collections ==========

class Collection(object):
    """A collection-style view of one Django model, offering the handful of operations the
    resolvers need. Every operation is a suspension point, is bounded by
    NEWSGRAPH['STORE_TIMEOUT'], and reports failure as a StoreError.
    """
    def __init__(self, model, timeout=None):
        self.model = model
        self.timeout = timeout
        self.name = model._meta.db_table

    def __repr__(self):
        return '<Collection {}>'.format(self.name)

    async def _run(self, operation, awaitable):
        try:
            return await asyncio.wait_for(awaitable, self.timeout)
        except asyncio.TimeoutError:
            raise StoreError('{}.{} timed out after {}s'.format(self.name, operation, self.timeout))
        except IntegrityError as e:
            raise DuplicateKeyError('{}.{} failed: {}'.format(self.name, operation, e)) from e
        except DatabaseError as e:
            raise StoreError('{}.{} failed: {}'.format(self.name, operation, e)) from e

    def canonical_id(self, id):
        """Return `id` in the form normalize_id() gives this collection's entities, so that 1,
        '1' and '01' are all '1'. An id that is not valid here is just made a string.
        """
        try:
            return str(self.model._meta.pk.to_python(id))
        except DjangoValidationError:
            return str(id)

    def _insert(self, document):
        # in a savepoint, so a failed insert leaves any enclosing transaction usable
        with transaction.atomic():
            return self.model.objects.create(**document)

    async def insert_one(self, document):
        """Insert `document` (a dict of model field values) and return the stored entity. A
        unique constraint violation raises DuplicateKeyError.
        """
        return await self._run('insert_one', sync_to_async(self._insert)(document))

    async def find(self, filter=None, skip=None, limit=None):
        """Return a list of entities matching the Q object `filter` (all entities if None), in
        primary key order, skipping `skip` and returning at most `limit` of them.
        """
        qs = self.model.objects.order_by('pk')
        if filter is not None:
            qs = qs.filter(filter)
        start = skip or 0
        if limit is not None:
            qs = qs[start:start + limit]
        elif start:
            qs = qs[start:]

        async def fetch():
            return [entity async for entity in qs]
        return await self._run('find', fetch())

    async def find_one(self, **lookup):
        """Return the first entity whose fields equal `lookup`, or None."""
        qs = self.model.objects.filter(**lookup).order_by('pk')
        return await self._run('find_one', qs.afirst())

    async def find_by_ids(self, ids):
        """Return the entities whose ids are in `ids`, in no particular order. Ids that are not
        valid for this collection (e.g. 'abc' for an integer key) simply match nothing.
        """
        pk_field = self.model._meta.pk
        native_ids = set()
        for id in ids:
            try:
                native_ids.add(pk_field.to_python(id))
            except DjangoValidationError:
                logger.debug('Ignoring malformed %s id %r', self.name, id)
        if not native_ids:
            return []
        qs = self.model.objects.filter(pk__in=native_ids)

        async def fetch():
            return [entity async for entity in qs]
        return await self._run('find_by_ids', fetch())


class Store(object):
    """The process-wide store handle: one Collection per entity kind."""
    def __init__(self, timeout=None):
        # imported here so the store module can be imported before the apps are ready
        from links.models import LinkModel, VoteModel
        from users.models import UserModel
        self.links = Collection(LinkModel, timeout)
        self.users = Collection(UserModel, timeout)
        self.votes = Collection(VoteModel, timeout)

    @classmethod
    def from_settings(cls):
        return cls(timeout=newsgraph_setting('STORE_TIMEOUT'))
