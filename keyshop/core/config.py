"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # Публичный адрес API (для return_url ЮKassa, если yookassa_return_url пуст)
    public_base_url: str = ""
    # Trusted proxy IPs (comma-separated). Used for X-Forwarded-For in production.
    trusted_proxy_ips: str = ""

    # ===========================================
    # DATABASE
    # ===========================================
    database_url: str  # Required, no default

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # TELEGRAM BOT
    # ===========================================
    telegram_bot_token: str  # Required, no default
    # Username бота без @ (для return_url по умолчанию). Пример: keyshop_bot
    telegram_bot_username: str = ""
    # Куда падают уведомления: новые тикеты, сообщения поддержки, пополнения Steam
    admin_telegram_id: int  # Required, no default

    # ===========================================
    # YOOKASSA
    # ===========================================
    yookassa_shop_id: str  # Required, no default
    yookassa_secret_key: str  # Required, no default
    yookassa_api_url: str = "https://api.yookassa.ru/v3"
    yookassa_return_url: str = ""
    payment_currency: str = "RUB"
    payment_timeout_seconds: float = 10.0

    # ===========================================
    # BUSINESS RULES
    # ===========================================
    # Комиссия за пополнение Steam (вычитается из суммы): 1000 -> 930
    steam_fee_percent: int = 7
    topup_min_amount: int = 1
    topup_max_amount: int = 100_000
    # Фоновая сверка платежей смотрит только на заказы моложе этого окна
    reconcile_window_hours: int = 24
    seed_demo_catalog: bool = False

    # ===========================================
    # ADMIN UI (REQUIRED - CHANGE DEFAULTS!)
    # ===========================================
    admin_ui_username: str  # Required, no default
    admin_ui_password: str  # Required, no default
    admin_ui_password_hash_sha256: str | None = None  # Optional, more secure than plain password
    admin_ui_session_secret: str  # Required, no default
    admin_ui_session_ttl: int = 3600  # 1 hour
    admin_ui_cookie_secure: bool = False  # Set True in production (HTTPS)
    admin_ui_cookie_samesite: str = "strict"

    # Login rate limit (brute-force protection)
    login_rate_limit_attempts: int = 5
    login_rate_limit_window_seconds: int = 900  # 15 min

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @property
    def trusted_proxy_ips_set(self) -> set[str]:
        """Get trusted proxy IPs as a set."""
        return {ip.strip() for ip in self.trusted_proxy_ips.split(",") if ip.strip()}

    @property
    def payment_return_url(self) -> str:
        """Куда ЮKassa вернёт пользователя после оплаты."""
        if self.yookassa_return_url:
            return self.yookassa_return_url
        if self.telegram_bot_username:
            return f"https://t.me/{self.telegram_bot_username}"
        return self.public_base_url or "https://t.me"

    @field_validator("admin_ui_session_secret")
    @classmethod
    def validate_session_secret(cls, v: str) -> str:
        """Ensure session secret is reasonably secure."""
        if len(v) < 16:
            raise ValueError("admin_ui_session_secret must be at least 16 characters")
        if v in ("changeme", "secret", "password", "admin"):
            raise ValueError("admin_ui_session_secret is too weak, please change it")
        return v

    @field_validator("admin_ui_password")
    @classmethod
    def validate_admin_password(cls, v: str) -> str:
        """Reject obviously weak passwords."""
        if v in ("admin", "password", "123456", "changeme"):
            raise ValueError("admin_ui_password is too weak, please change it")
        return v

    @field_validator("steam_fee_percent")
    @classmethod
    def validate_fee(cls, v: int) -> int:
        if not 0 <= v < 100:
            raise ValueError("steam_fee_percent must be in [0, 100)")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Игнорировать неизвестные поля из .env


settings = Settings()
