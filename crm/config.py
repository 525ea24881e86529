import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_READ_URL = os.environ.get("DATABASE_READ_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "crm_vendas.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", False)

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-crm-vendas")
    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    STOCK_UNIT_SUFFIXES = os.environ.get("STOCK_UNIT_SUFFIXES", "0001")
    ALLOW_NEGATIVE_STOCK = _bool_env("ALLOW_NEGATIVE_STOCK", False)

    PRICING_API_URL = os.environ.get("PRICING_API_URL")
    PRICING_API_KEY = os.environ.get("PRICING_API_KEY")
    PRICING_API_TIMEOUT_SECONDS = _int_env("PRICING_API_TIMEOUT_SECONDS", 30)
    PRICING_API_VERIFY_SSL = _bool_env("PRICING_API_VERIFY_SSL", True)
    PRICING_SELLER_LEVEL_DEFAULT = _int_env("PRICING_SELLER_LEVEL_DEFAULT", 1)

    CART_TOTALS_CACHE_TTL_SECONDS = _int_env("CART_TOTALS_CACHE_TTL_SECONDS", 300)
    LEADS_PAGE_SIZE_DEFAULT = _int_env("LEADS_PAGE_SIZE_DEFAULT", 20)
    LEADS_PAGE_SIZE_MAX = _int_env("LEADS_PAGE_SIZE_MAX", 100)

    INSIGHTS_SCHEDULER_ENABLED = _bool_env("INSIGHTS_SCHEDULER_ENABLED", True)
    SCHEDULER_TICK_SECONDS = _int_env("SCHEDULER_TICK_SECONDS", 60)
    CHURN_INTERVAL_SECONDS = _int_env("CHURN_INTERVAL_SECONDS", 6 * 60 * 60)
    DEVIATION_INTERVAL_SECONDS = _int_env("DEVIATION_INTERVAL_SECONDS", 12 * 60 * 60)
    SCHEDULER_MIN_BACKOFF_SECONDS = _int_env("SCHEDULER_MIN_BACKOFF_SECONDS", 60)
    SCHEDULER_MAX_BACKOFF_SECONDS = _int_env("SCHEDULER_MAX_BACKOFF_SECONDS", 3600)

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL nao definida para ambiente de producao.")
        if env == "production" and self.SECRET_KEY == "dev-secret-crm-vendas":
            raise RuntimeError("SECRET_KEY insegura para producao.")
        if env == "production" and not self.PRICING_API_KEY:
            raise RuntimeError("PRICING_API_KEY nao definida para ambiente de producao.")
