# newsgraph -- newsgraph/pubsub.py
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
from collections import defaultdict


logger = logging.getLogger(__name__)


# ========== Event Bus ==========

# One EventBus serves the whole process. Mutations publish to a topic, and every subscriber to
# that topic gets its own unbounded queue, so a slow subscriber never holds up the publisher or
# the other subscribers. Nothing is kept for subscribers that arrive after a publish.
#
# publish(), subscribe() and unsubscribing never suspend, and publish() walks a snapshot of the
# subscriber list, so the registry stays consistent no matter where in a request's execution a
# subscription is opened or closed.

class EventBus(object):
    def __init__(self):
        self._subscribers = defaultdict(list)

    def publish(self, topic, payload):
        """Deliver `payload` to every current subscriber of `topic`. Returns the number of
        subscribers it was queued for.
        """
        delivered = 0
        for subscription in tuple(self._subscribers.get(topic, ())):
            if subscription._offer(payload):
                delivered += 1
        logger.debug('Published to %s: %d subscriber(s)', topic, delivered)
        return delivered

    def subscribe(self, topic, where=None):
        """Start receiving payloads published to `topic` from now on. `where` is an optional
        predicate; payloads it rejects are not delivered to this subscriber.
        """
        subscription = Subscription(self, topic, where)
        self._subscribers[topic].append(subscription)
        logger.debug('Subscribed to %s (%d active)', topic, len(self._subscribers[topic]))
        return subscription

    def subscriber_count(self, topic):
        return len(self._subscribers.get(topic, ()))

    def _unsubscribe(self, subscription):
        subscribers = self._subscribers.get(subscription.topic)
        if subscribers and subscription in subscribers:
            subscribers.remove(subscription)
            if not subscribers:
                del self._subscribers[subscription.topic]
            logger.debug('Unsubscribed from %s', subscription.topic)


_CLOSED = object()


class Subscription(object):
    """An async iterator over the payloads published to one topic. Closing it (aclose(), leaving
    an `async with` block, or closing the GraphQL subscription built on it) stops delivery and
    ends any pending iteration.
    """
    def __init__(self, bus, topic, where=None):
        self.bus = bus
        self.topic = topic
        self.where = where
        self.closed = False
        self._queue = asyncio.Queue()

    def __repr__(self):
        return '<Subscription {} pending={}{}>'.format(
            self.topic, self._queue.qsize(), ' closed' if self.closed else '')

    def _offer(self, payload):
        if self.closed:
            return False
        if self.where is not None and not self.where(payload):
            return False
        self._queue.put_nowait(payload)
        return True

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.closed:
            raise StopAsyncIteration
        payload = await self._queue.get()
        if payload is _CLOSED or self.closed:
            raise StopAsyncIteration
        return payload

    def close(self):
        if self.closed:
            return
        self.closed = True
        self.bus._unsubscribe(self)
        # wake a pending __anext__
        self._queue.put_nowait(_CLOSED)

    async def aclose(self):
        self.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.close()
