# newsgraph -- newsgraph/errors.py
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

from django.conf import settings
from graphql.error import GraphQLError

from newsgraph.conf import newsgraph_setting


logger = logging.getLogger(__name__)

MASKED_MESSAGE = 'Internal server error'


# ========== error types ==========

class ValidationError(Exception):
    """A client input problem. The offending input field name travels with the error, and
    format_error() hands it to the client.
    """
    def __init__(self, message, field=None):
        super().__init__(message)
        self.message = message
        self.field = field


class StoreError(Exception):
    """The store adapter could not complete an operation (database error or timeout)."""


class DuplicateKeyError(StoreError):
    """An insert broke a unique constraint."""


class AuthenticationError(Exception):
    """Sign-in was refused. The message is meant for the client."""


# These are the errors whose messages are written for clients. Anything else that reaches the
# error boundary is an internal failure, and its message is only shown when DEBUG is on.
CLIENT_ERRORS = (ValidationError, AuthenticationError)


# ========== store error policy ==========

def store_errors(label):
    """Decorate an async resolver so that a StoreError raised inside it is logged under `label`
    (e.g. 'Link.postedBy') and then handled according to NEWSGRAPH['STORE_ERROR_POLICY']:
    'raise' re-raises it for the GraphQL error boundary, 'null' resolves the field to None.
    """
    def decorator(resolver):
        @functools.wraps(resolver)
        async def wrapper(*args, **kwargs):
            try:
                return await resolver(*args, **kwargs)
            except StoreError as e:
                logger.error('Store error resolving %s: %s', label, e)
                if newsgraph_setting('STORE_ERROR_POLICY') == 'null':
                    return None
                raise
        return wrapper
    return decorator


# ========== error boundary ==========

def format_error(error):
    """Turn a GraphQLError into the dict sent to the client, adding the name of the field that
    failed validation, if any.
    """
    if not isinstance(error, GraphQLError):
        error = GraphQLError(str(error), original_error=error)
    data = dict(error.formatted)
    original = error.original_error
    data['field'] = getattr(original, 'field', None)
    if original is not None and not isinstance(original, CLIENT_ERRORS):
        if not isinstance(original, StoreError):
            # store errors were already logged by store_errors()
            logger.error('Unexpected error resolving %s', error.path, exc_info=original)
        if not settings.DEBUG:
            data['message'] = MASKED_MESSAGE
    return data
