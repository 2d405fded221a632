# quizserver/settings.py
from pathlib import Path
import os
from dotenv import load_dotenv
import dj_database_url
from corsheaders.defaults import default_headers
import logging
import sentry_sdk
from sentry_sdk.integrations.django import DjangoIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")  # 로컬 개발용 (선택)

# 콤마로 구분된 환경 변수를 리스트로 읽는다
def csv_env(name, default=""):
    raw = os.getenv(name, default)
    return [x.strip() for x in raw.split(",") if x.strip()]

def int_env(name, default):
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default

def float_env(name, default):
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default

# --- Core ---
SECRET_KEY = os.getenv("SECRET_KEY", "!!!_dev_only_change_me_!!!")
DEBUG = os.getenv("DEBUG", "False").lower() == "true"

ALLOWED_HOSTS = csv_env("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver")

# --- CORS / CSRF ---
CORS_ALLOWED_ORIGINS = csv_env(
    "CORS_ALLOWED_ORIGINS",
    "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000"
)
CSRF_TRUSTED_ORIGINS = csv_env(
    "CSRF_TRUSTED_ORIGINS",
    "http://localhost:5173,http://127.0.0.1:5173"
)

CORS_ALLOW_CREDENTIALS = True
CORS_ALLOW_METHODS = ["GET", "POST", "DELETE", "OPTIONS"]
CORS_ALLOW_HEADERS = (*default_headers, "x-client-id")

INSTALLED_APPS = [
    "corsheaders",
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "quizai.apps.QuizAIConfig",
]

MIDDLEWARE = [
    # CORS는 최상단에 둔다
    "corsheaders.middleware.CorsMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "quizserver.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": os.getenv("LOG_LEVEL", "INFO"),
    },
}

SENTRY_DSN = os.getenv("SENTRY_DSN", "")

if SENTRY_DSN:
    sentry_logging = LoggingIntegration(
        level=logging.INFO,         # breadcrumbs로 남길 레벨
        event_level=logging.ERROR,  # Sentry 이벤트로 보낼 레벨
    )

    sentry_sdk.init(
        dsn=SENTRY_DSN,
        integrations=[
            DjangoIntegration(),
            sentry_logging,
        ],
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.0")),
        send_default_pii=False,
        environment=os.getenv("SENTRY_ENV", "local"),
        release=os.getenv("SENTRY_RELEASE", "history-quiz@dev"),
    )


WSGI_APPLICATION = "quizserver.wsgi.application"

# --- Database ---
# sqlite에는 sslmode를 넘기지 않는다 (sqlite3.connect에서 TypeError)
_db_url = os.getenv("DATABASE_URL")
if _db_url:
    _is_postgres = _db_url.startswith("postgres://") or _db_url.startswith("postgresql://")
    DATABASES = {
        "default": dj_database_url.parse(
            _db_url,
            conn_max_age=600,
            ssl_require=_is_postgres,
        )
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

# --- i18n / timezone ---
# 일일 한도는 이 시간대의 자정 기준으로 초기화된다
LANGUAGE_CODE = "ko-kr"
TIME_ZONE = os.getenv("TIME_ZONE", "Asia/Seoul")
USE_I18N = True
USE_TZ = True

# --- Static files (Whitenoise) ---
STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"
STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
    "staticfiles": {"BACKEND": "whitenoise.storage.CompressedManifestStaticFilesStorage"},
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")

# --- AI image / chat guards ---
IMAGE_CACHE_EXPIRY_DAYS = int_env("IMAGE_CACHE_EXPIRY_DAYS", 30)
IMAGE_CACHE_EVICT_COUNT = int_env("IMAGE_CACHE_EVICT_COUNT", 10)
GOODS_DAILY_LIMIT = int_env("GOODS_DAILY_LIMIT", 3)
SESSION_TOKEN_CEILING = int_env("SESSION_TOKEN_CEILING", 100_000)
# gpt-4o-mini 기준 대략적인 단가 (USD / 1K tokens)
TOKEN_COST_PER_1K_USD = float_env("TOKEN_COST_PER_1K_USD", 0.0006)
KV_STORE_CAPACITY_BYTES = int_env("KV_STORE_CAPACITY_BYTES", 5 * 1024 * 1024)
CHAT_MAX_TURNS = int_env("CHAT_MAX_TURNS", 10)
# 메모리에 들고 있는 채팅 세션 수 상한 (넘으면 오래된 것부터 제거)
CHAT_MAX_SESSIONS = int_env("CHAT_MAX_SESSIONS", 1000)
# 이미지 생성 엔드포인트의 IP당 분당 요청 수
IMAGE_RATE_LIMIT_PER_MIN = int_env("IMAGE_RATE_LIMIT_PER_MIN", 10)

OPENAI_CHAT_MODEL = os.getenv("OPENAI_CHAT_MODEL", "gpt-4o-mini")
OPENAI_IMAGE_MODEL = os.getenv("OPENAI_IMAGE_MODEL", "dall-e-3")

if not DEBUG:
    CSRF_COOKIE_SECURE = True
    SESSION_COOKIE_SECURE = True
    USE_X_FORWARDED_HOST = True
