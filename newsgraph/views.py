# newsgraph -- newsgraph/views.py
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


import json
import logging

from django.core.serializers.json import DjangoJSONEncoder
from django.http import (HttpResponseBadRequest, HttpResponseNotAllowed, JsonResponse,
                         StreamingHttpResponse)
from django.views import View
from graphene_django import views as graphene_views
from graphql import ExecutionResult

from newsgraph.context import build_context
from newsgraph.schema import schema


logger = logging.getLogger(__name__)


# ========== response helpers ==========

def result_payload(result, format_error):
    payload = {'data': result.data}
    if result.errors:
        payload['errors'] = [format_error(e) for e in result.errors]
    return payload


def error_response(message, status=400):
    return JsonResponse({'errors': [{'message': message}]}, status=status)


def format_event(event, data):
    """Return one Server-Sent Event."""
    return 'event: {}\ndata: {}\n\n'.format(event, json.dumps(data, cls=DjangoJSONEncoder))


# ========== views ==========

# Both views take the process-wide store and event bus as as_view() arguments (see
# newsgraph.urls), and build a new RequestContext, with its own loaders, for every request.
#
# Request parsing and the GraphiQL page come from graphene-django's GraphQLView. Its dispatch()
# executes synchronously, so these views route requests to async handlers with Django's plain
# View.dispatch instead, and only hand the GraphiQL page back to graphene-django.

class GraphQLView(graphene_views.GraphQLView):
    """POST executes one query or mutation. With graphiql=True, a GET from a browser gets the
    GraphiQL playground, which posts its queries back to the same URL.
    """
    http_method_names = ['get', 'post', 'options']
    schema = schema
    store = None
    event_bus = None

    dispatch = View.dispatch

    def __init__(self, store=None, event_bus=None, **kwargs):
        super().__init__(**kwargs)
        if store is not None:
            self.store = store
        if event_bus is not None:
            self.event_bus = event_bus

    def get_params(self, request, data=None):
        """Return (query, variables, operationName) for `request`, taking them from `data`, the
        request body, or the query string. Raises graphene-django's HttpError for a request that
        can't be executed.
        """
        if data is None:
            data = self.parse_body(request)
        query, variables, operation_name, _ = self.get_graphql_params(request, data)
        if not query:
            raise graphene_views.HttpError(HttpResponseBadRequest('Must provide query string.'))
        if variables is not None and not isinstance(variables, dict):
            raise graphene_views.HttpError(HttpResponseBadRequest('Variables must be an object.'))
        return query, variables, operation_name

    async def get(self, request):
        if self.graphiql and self.can_display_graphiql(request, {}):
            return graphene_views.GraphQLView.dispatch(self, request)
        return HttpResponseNotAllowed(['POST'], 'GraphQL requests are sent with POST.')

    async def post(self, request):
        try:
            query, variables, operation_name = self.get_params(request)
        except graphene_views.HttpError as e:
            return error_response(e.message, status=e.response.status_code)
        context = await build_context(request, self.store, self.event_bus)
        result = await self.schema.execute_async(
            query,
            variable_values=variables,
            operation_name=operation_name,
            context_value=context,
        )
        status = 400 if result.errors and result.data is None else 200
        return JsonResponse(result_payload(result, context.format_error), status=status,
                            encoder=DjangoJSONEncoder)


async def event_stream(results, context):
    """Turn the async iterator of ExecutionResults that a GraphQL subscription produces into
    Server-Sent Events. Each event is resolved against a clean loader cache.

    When the client goes away, Django cancels the response, and the `finally` block closes the
    subscription.
    """
    try:
        async for result in results:
            yield format_event('next', result_payload(result, context.format_error))
            context.loaders.clear()
        yield format_event('complete', None)
    finally:
        aclose = getattr(results, 'aclose', None)
        if aclose is not None:
            await aclose()
        logger.debug('Subscription stream closed')


class SubscriptionView(GraphQLView):
    """GET or POST /subscriptions: run a subscription and stream its results as Server-Sent
    Events. GET takes the parameters from the query string, for the benefit of EventSource.
    """
    graphiql = False

    async def get(self, request):
        return await self.subscribe(request, {})

    async def post(self, request):
        return await self.subscribe(request)

    async def subscribe(self, request, data=None):
        try:
            query, variables, operation_name = self.get_params(request, data)
        except graphene_views.HttpError as e:
            return error_response(e.message, status=e.response.status_code)
        context = await build_context(request, self.store, self.event_bus)
        results = await self.schema.subscribe(
            query,
            variable_values=variables,
            operation_name=operation_name,
            context_value=context,
        )
        if isinstance(results, ExecutionResult):
            return JsonResponse(result_payload(results, context.format_error), status=400)
        response = StreamingHttpResponse(event_stream(results, context),
                                         content_type='text/event-stream')
        response['Cache-Control'] = 'no-cache'
        response['X-Accel-Buffering'] = 'no'
        return response
