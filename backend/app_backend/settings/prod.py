from .settings import *
import os
from dotenv import load_dotenv
load_dotenv(os.path.join(BASE_DIR, '..', '.env'))

DEBUG = False
ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(',')
CORS_ALLOW_ALL_ORIGINS = False
CORS_ALLOWED_ORIGINS = os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:3000").split(',')

SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "True") == "True"
CSRF_COOKIE_SECURE = SESSION_COOKIE_SECURE

# Ride plan change feeds fan out across workers through Redis
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels_redis.core.RedisChannelLayer",
        "CONFIG": {
            "hosts": [REDIS_URL],
            "capacity": int(os.getenv("CHANNEL_CAPACITY", "500")),
        },
    }
}

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", REDIS_URL)
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", CELERY_BROKER_URL)

RIDE_DOCUMENT_STORE = "realtime.store.ChannelLayerDocumentStore"
RIDE_CALENDAR_UID_DOMAIN = os.getenv("RIDE_CALENDAR_UID_DOMAIN", ALLOWED_HOSTS[0])

for _logger in LOGGING['loggers'].values():
    _logger['level'] = os.getenv("LOG_LEVEL", "WARNING")
