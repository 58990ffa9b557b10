import os

from django.conf import settings
from django.core.asgi import get_asgi_application


os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'newsgraph.settings')

application = get_asgi_application()

if settings.DEBUG:
    # serve the GraphiQL assets, as runserver would
    from django.contrib.staticfiles.handlers import ASGIStaticFilesHandler
    application = ASGIStaticFilesHandler(application)
