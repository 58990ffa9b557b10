# newsgraph -- newsgraph/conf.py
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


from django.conf import settings


# Project options live in a single NEWSGRAPH dict in the Django settings, in the same way that
# graphene-django keeps its options in GRAPHENE. Anything missing from the dict falls back to the
# defaults here.

DEFAULTS = {
    # seconds allowed for any single store operation; None waits forever
    'STORE_TIMEOUT': 10.0,
    # 'raise' propagates store failures to the GraphQL error boundary, 'null' logs them and
    # resolves the field to null
    'STORE_ERROR_POLICY': 'raise',
    # largest key set a Batched Loader sends in one bulk fetch; None is unlimited
    'LOADER_MAX_BATCH_SIZE': None,
}

STORE_ERROR_POLICIES = ('raise', 'null')


def newsgraph_setting(name):
    """Return the NEWSGRAPH option `name`, or its default."""
    if name not in DEFAULTS:
        raise KeyError('Unknown NEWSGRAPH setting: {}'.format(name))
    options = getattr(settings, 'NEWSGRAPH', None) or {}
    value = options.get(name, DEFAULTS[name])
    if name == 'STORE_ERROR_POLICY' and value not in STORE_ERROR_POLICIES:
        raise ValueError('NEWSGRAPH["STORE_ERROR_POLICY"] must be one of {}, not {!r}'
                         .format(', '.join(STORE_ERROR_POLICIES), value))
    return value
