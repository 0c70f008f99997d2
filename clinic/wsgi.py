"""
WSGI config for the clinic project.

It exposes the WSGI callable as a module-level variable named ``application``.
Timers for the periodic backup need an event loop and only run under ASGI;
under WSGI backups happen on writes (throttled) and on request.
"""
import os

from django.core.wsgi import get_wsgi_application  # type: ignore

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'clinic.settings')

application = get_wsgi_application()
