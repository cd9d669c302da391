"""
ASGI entry point (uvicorn config.asgi:application).

The settlement API is plain HTTP; there are no websocket routes.
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_asgi_application()
