import os

from django.conf import settings
from django.core.management.base import BaseCommand


class Command(BaseCommand):
    help = ('Serve the GraphQL API under uvicorn. Subscriptions stream over HTTP, so the app has '
            'to run under an ASGI server rather than runserver.')

    def add_arguments(self, parser):
        parser.add_argument('--host', default=os.environ.get('HOST', '127.0.0.1'))
        parser.add_argument('--port', type=int, default=int(os.environ.get('PORT', 5000)))
        parser.add_argument('--reload', action='store_true',
                            help='Restart the server when code changes.')

    def handle(self, *args, **options):
        import uvicorn

        self.stdout.write('GraphQL server running on http://{host}:{port}/graphql, '
                          'subscriptions on /subscriptions'.format(**options))
        module, _, attr = settings.ASGI_APPLICATION.rpartition('.')
        uvicorn.run(
            '{}:{}'.format(module, attr),
            host=options['host'],
            port=options['port'],
            reload=options['reload'],
            log_level=settings.LOG_LEVEL.lower(),
        )
