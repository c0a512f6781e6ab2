"""
WSGI config for the queue desk project.

It exposes the WSGI callable as a module-level variable named ``application``.
WebSocket traffic is only served by the ASGI entrypoint in ``asgi.py``.
"""
import os

from django.core.wsgi import get_wsgi_application  # type: ignore

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'queuedesk.settings')

application = get_wsgi_application()
