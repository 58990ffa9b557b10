# newsgraph -- newsgraph/context.py
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


from newsgraph.errors import format_error
from newsgraph.loaders import build_loaders
from users.schema import get_user_from_auth_token


class RequestContext(object):
    """The `info.context` every resolver sees.

    `store` and `event_bus` are the process-wide objects, passed in by reference. `loaders` are
    built fresh for each context and never shared, so cached entities cannot leak from one request
    into another. `user` is the authenticated UserModel, or None.
    """
    def __init__(self, store, event_bus, user=None, request=None, format_error=format_error):
        self.store = store
        self.event_bus = event_bus
        self.user = user
        self.request = request
        self.format_error = format_error
        self.loaders = build_loaders(store)


async def build_context(request, store, event_bus):
    """Authenticate `request` and return a new RequestContext for it."""
    user = await get_user_from_auth_token(request, store.users)
    return RequestContext(store, event_bus, user=user, request=request)
