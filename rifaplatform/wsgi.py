"""
WSGI config for rifaplatform project.

Expone la variable 'application' para servidores WSGI (gunicorn, uWSGI, etc.).
"""
import os
from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "rifaplatform.settings")
application = get_wsgi_application()
