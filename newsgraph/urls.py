from django.urls import path

from newsgraph.pubsub import EventBus
from newsgraph.store import Store
from newsgraph.views import GraphQLView, SubscriptionView


# The process-wide collaborators. They are created once here and handed to the views by
# reference; nothing else reaches for them.
store = Store.from_settings()
event_bus = EventBus()

urlpatterns = [
    # GraphiQL playground; send 'Authorization: bearer token-<email>' from its headers tab
    path('graphiql', GraphQLView.as_view(graphiql=True, store=store, event_bus=event_bus),
         name='graphiql'),
    path('graphql', GraphQLView.as_view(store=store, event_bus=event_bus), name='graphql'),
    path('subscriptions', SubscriptionView.as_view(store=store, event_bus=event_bus),
         name='subscriptions'),
]
