import os
from pathlib import Path
from dotenv import load_dotenv
import dj_database_url

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY")
DEBUG = os.getenv("DEBUG", "False") == "True"
ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "").split(",")

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "raffles",
]

# WhiteNoise sirve los estáticos del admin
MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware", # ← requerido por admin
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",  # ← requerido por admin
    "django.contrib.messages.middleware.MessageMiddleware",     # ← requerido por admin
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "rifaplatform.urls"

TEMPLATES = [{
    "BACKEND":"django.template.backends.django.DjangoTemplates",
    "DIRS":[],
    "APP_DIRS": True,
    "OPTIONS":{"context_processors":[
        "django.template.context_processors.debug",
        "django.template.context_processors.request",
        "django.contrib.auth.context_processors.auth",
        "django.contrib.messages.context_processors.messages",
    ]},
}]

WSGI_APPLICATION = "rifaplatform.wsgi.application"

if "DATABASE_URL" in os.environ:
    DATABASES = {
        "default": dj_database_url.parse(
            os.environ["DATABASE_URL"],
            conn_max_age=600,
            ssl_require=os.getenv("DATABASE_SSL", "True") == "True",
        )
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "es-cl"
TIME_ZONE = "America/Santiago"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
    "staticfiles": {"BACKEND": "whitenoise.storage.CompressedManifestStaticFilesStorage"},
}

# Logging
RAFFLE_LOG_LEVEL = os.getenv("RAFFLE_LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
    "loggers": {
        "raffles": {"level": RAFFLE_LOG_LEVEL},
    },
}

# Rifas
RAFFLE_PAYMENT_GATEWAY = os.getenv("RAFFLE_PAYMENT_GATEWAY", "raffles.gateways.MercadoPagoGateway")
RAFFLE_PUBLIC_BASE_URL = os.getenv("RAFFLE_PUBLIC_BASE_URL", "http://localhost:8000")
RAFFLE_MAX_NUMBERS_PER_RESERVATION = int(os.getenv("RAFFLE_MAX_NUMBERS_PER_RESERVATION", "50"))
# 0 = los números reservados pero no pagados siguen apareciendo disponibles
RAFFLE_PENDING_HOLD_MINUTES = int(os.getenv("RAFFLE_PENDING_HOLD_MINUTES", "0"))
RAFFLE_CHECKOUT_RATE = os.getenv("RAFFLE_CHECKOUT_RATE", "10/m")

# Mercado Pago
MP_ACCESS_TOKEN = os.getenv("MP_ACCESS_TOKEN")
MP_PUBLIC_KEY = os.getenv("MP_PUBLIC_KEY")
MP_WEBHOOK_SECRET = os.getenv("MP_WEBHOOK_SECRET")
MP_CURRENCY = os.getenv("MP_CURRENCY", "CLP")
MP_API_BASE_URL = os.getenv("MP_API_BASE_URL", "https://api.mercadopago.com")
MP_TIMEOUT = float(os.getenv("MP_TIMEOUT", "10"))
