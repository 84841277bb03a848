"""
WSGI config for the WifiGate project
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "wifigate.settings")

application = get_wsgi_application()
