# disparador/core/config.py

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from loguru import logger
from pathlib import Path
import warnings

DEFAULT_SECRET_KEY = "!!!GENERATE_A_STRONG_SECRET_KEY_32_BYTES_HEX!!!"

def find_dotenv_path(filename: str = '.env', usecwd: bool = False) -> str | None:
    """Procura o arquivo .env subindo a partir deste módulo (ou do CWD)."""
    start_dir = Path.cwd() if usecwd else Path(__file__).resolve().parent
    current_dir = start_dir
    for _ in range(10):
        env_path = current_dir / filename
        if env_path.is_file():
            return str(env_path)
        parent_dir = current_dir.parent
        if parent_dir == current_dir:
            break
        current_dir = parent_dir
    env_path_cwd = Path.cwd() / filename
    if env_path_cwd.is_file():
        return str(env_path_cwd)
    return None

def dotenv_files() -> tuple[str, ...] | None:
    """.env e .env.local que existirem; None quando não há nenhum."""
    return tuple(p for p in (find_dotenv_path('.env'), find_dotenv_path('.env.local')) if p) or None

class Settings(BaseSettings):
    PROJECT_NAME: str = "Disparador"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Database & Cache
    MONGODB_URI: str = ""
    MONGODB_DB_NAME: str | None = None
    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    # Security
    SECRET_KEY: str = DEFAULT_SECRET_KEY
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7
    CORS_ORIGINS: str = "*"

    # Rate limits (slowapi)
    RATE_LIMIT_ENABLED: bool = True
    DEFAULT_RATE_LIMIT: str = "500/minute"
    AUTH_RATE_LIMIT: str = "10/15minutes"
    REGISTER_RATE_LIMIT: str = "5/hour"

    # WhatsApp gateway (processo externo que fala o protocolo)
    WHATSAPP_GATEWAY_URL: str = "http://localhost:3002"
    WHATSAPP_GATEWAY_API_KEY: str | None = None
    WHATSAPP_GATEWAY_TIMEOUT: float = 30.0
    RESTORE_SESSIONS_ON_STARTUP: bool = True

    # URL pública da API; com ela os links das mensagens passam por /l/{send_id}
    PUBLIC_BASE_URL: str | None = None

    # Arquivos
    UPLOADS_DIR: str = "uploads"
    PUBLIC_DIR: str = "public"

    # Integrações externas
    MERCADOPAGO_API_URL: str = "https://api.mercadopago.com"
    MERCADOPAGO_CURRENCY: str = "BRL"
    RECAPTCHA_VERIFY_URL: str = "https://www.google.com/recaptcha/api/siteverify"

    # Empresa interna usada pelo superadmin sem empresa vinculada
    SYSTEM_COMPANY_SLUG: str = "sistema-administrativo"

    # Gunicorn
    GUNICORN_BIND: str = "0.0.0.0:8000"
    GUNICORN_WORKERS: int | None = Field(default=None)
    GUNICORN_WORKER_CLASS: str = "uvicorn.workers.UvicornWorker"

    model_config = SettingsConfigDict(
        env_file=dotenv_files(),
        env_file_encoding='utf-8',
        extra='ignore',
        case_sensitive=False,
    )

    @property
    def cors_origins_list(self) -> list[str]:
        if self.CORS_ORIGINS.strip() == "*":
            return ["*"]
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

@lru_cache()
def get_settings() -> Settings:
    """Carrega e valida as configurações da aplicação."""
    logger.info("Loading application settings...")
    env_files_found = dotenv_files() or ()
    if env_files_found:
        logger.info(f"Loading environment variables from: {', '.join(env_files_found)}")
    else:
        logger.warning("No .env file found. Loading settings from system environment variables only.")

    settings_instance = Settings()

    required_vars = ['MONGODB_URI', 'SECRET_KEY']
    missing = [k for k in required_vars if not getattr(settings_instance, k, None)]
    if missing:
        logger.critical(f"Missing critical environment variables: {', '.join(missing)}")
        raise SystemExit(f"Missing critical environment variables: {', '.join(missing)}")

    if settings_instance.SECRET_KEY == DEFAULT_SECRET_KEY:
        logger.warning("SECURITY WARNING: Using default SECRET_KEY. Generate one with `openssl rand -hex 32`.")
        warnings.warn("SECURITY WARNING: Using default SECRET_KEY. Please generate and set a strong secret key!")

    if not settings_instance.WHATSAPP_GATEWAY_API_KEY:
        logger.warning("WHATSAPP_GATEWAY_API_KEY not set. Internal gateway endpoints will reject every call.")

    logger.info("Settings loaded and validated successfully.")
    return settings_instance

settings = get_settings()
