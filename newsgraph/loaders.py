# newsgraph -- newsgraph/loaders.py
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

from aiodataloader import DataLoader, dispatch_queue

from newsgraph.conf import newsgraph_setting
from newsgraph.store import normalize_id


logger = logging.getLogger(__name__)


# ========== Batched Loader ==========

# A BatchLoader lives for one request. Resolvers call load(key) as they go, and aiodataloader
# collects every key registered before its next-tick dispatch into a single bulk query. Each
# loaded entity is cached under its canonical key for the rest of the request, so a key is
# fetched at most once, and a failed fetch is not cached.
#
# dispatch() flushes the queue right away instead of waiting for the tick, for callers that want
# the fetch to happen at a point of their choosing.

class BatchLoader(DataLoader):
    def __init__(self, fetch, key_fn=str, max_batch_size=None, name=None):
        """`fetch` is an async function taking a list of canonical keys and returning the
        matching entities in any order, omitting keys that match nothing. `key_fn` puts a key in
        the canonical form normalize_id() gives the fetched entities, which is how results are
        paired with keys.
        """
        super().__init__(max_batch_size=max_batch_size, get_cache_key=key_fn)
        self.fetch = fetch
        self.name = name or getattr(fetch, '__name__', 'loader')

    def __repr__(self):
        return '<BatchLoader {} cached={} queued={}>'.format(
            self.name, len(self._cache), len(self._queue))

    def load(self, key):
        """Return an awaitable for the entity with id `key`, or None if there isn't one."""
        if key is None:
            # optional relations, e.g. the author of an anonymous link
            future = asyncio.get_running_loop().create_future()
            future.set_result(None)
            return future
        return super().load(key)

    def clear(self, key=None):
        """Forget the cached entry for `key`, or every cached entry if `key` is None."""
        if key is None:
            return self.clear_all()
        return super().clear(key)

    async def dispatch(self):
        """Fetch every queued key now. Returns once all of them are resolved."""
        pending = [item.future for item in self._queue]
        if not pending:
            return
        dispatch_queue(self)
        await asyncio.gather(*pending, return_exceptions=True)

    async def batch_load_fn(self, keys):
        if not keys:
            return []
        canonical = [self.get_cache_key(key) for key in keys]
        ids = list(dict.fromkeys(canonical))
        logger.debug('%s: fetching %d key(s)', self.name, len(ids))
        try:
            entities = await self.fetch(ids)
        except Exception as e:
            logger.error('%s: batch of %d key(s) failed: %s', self.name, len(ids), e)
            raise
        found = {normalize_id(entity): entity for entity in entities or ()}
        return [found.get(key) for key in canonical]


class Loaders(object):
    """The loaders for one request."""
    def __init__(self, store, max_batch_size=None):
        self.user = BatchLoader(store.users.find_by_ids, key_fn=store.users.canonical_id,
                                max_batch_size=max_batch_size, name='user')
        self.link = BatchLoader(store.links.find_by_ids, key_fn=store.links.canonical_id,
                                max_batch_size=max_batch_size, name='link')

    def clear(self):
        self.user.clear()
        self.link.clear()


def build_loaders(store):
    return Loaders(store, max_batch_size=newsgraph_setting('LOADER_MAX_BATCH_SIZE'))
