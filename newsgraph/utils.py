# newsgraph -- newsgraph/utils.py
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


import logging
import traceback

from graphql.error import GraphQLError


# ========== log silencing during tests ==========

# Many tests deliberately provoke store failures, bad sign-ins and the like, each of which the
# resolvers dutifully log. That clutters the test output with messages that only matter when a
# test fails, so this provides a means to turn the project's loggers down while tests run, and to
# restore them afterwards.

QUIET_LOGGERS = ('newsgraph', 'links', 'users')

saved_levels = {}


def quiet_logging(names=QUIET_LOGGERS):
    """Silence everything below CRITICAL on the project's loggers."""
    for name in names:
        logger = logging.getLogger(name)
        saved_levels.setdefault(name, logger.level)
        logger.setLevel(logging.CRITICAL)


def unquiet_logging():
    """Restore the levels quiet_logging() changed."""
    while saved_levels:
        name, level = saved_levels.popitem()
        logging.getLogger(name).setLevel(level)


# ========== GraphQL error reporting ==========

def format_graphql_errors(errors):
    """Return a string with the usual exception traceback, plus some extra fields that GraphQL
    provides.
    """
    if not errors:
        return None
    text = []
    for i, e in enumerate(errors):
        text.append('GraphQL schema execution error [{}]:\n'.format(i))
        if isinstance(e, GraphQLError):
            for attr in ('message', 'locations', 'path', 'nodes', 'positions', 'source'):
                value = getattr(e, attr, None)
                if value is None:
                    continue
                if attr == 'source':
                    text.append('source: {}:{}\n'.format(value.name, value.body))
                else:
                    text.append('{}: {}\n'.format(attr, repr(value)))
            if e.original_error is not None:
                e = e.original_error
        if isinstance(e, Exception):
            text.append(''.join(traceback.format_exception(type(e), e, e.__traceback__)))
        else:
            text.append(repr(e) + '\n')
    return ''.join(text)
