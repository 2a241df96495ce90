from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: Optional[str] = None  # Required for auth.admin calls (user create/delete)

    # Maintenance tokens (x-admin-token / x-internal-token headers)
    admin_api_token: Optional[str] = None
    internal_api_token: Optional[str] = None

    # OTP
    otp_rate_limit_max_requests: int = 5
    otp_rate_limit_window_seconds: int = 3600
    otp_rate_limit_bypass: bool = False
    otp_expiry_minutes: int = 5
    otp_max_attempts: int = 3
    otp_resend_cooldown_seconds: int = 60
    otp_verified_window_minutes: int = 30

    # SMTP
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_from: str = "TecBunny Store <no-reply@tecbunny.com>"
    smtp_use_tls: bool = True

    # 2Factor SMS
    twofactor_api_key: Optional[str] = None
    twofactor_otp_template: str = "OTP1"

    # Superfone WhatsApp
    superfone_api_url: str = "https://prod-api.superfone.co.in/superfone/api/dragonfly/whatsapp"
    superfone_api_key: Optional[str] = None
    superfone_cookie: Optional[str] = None
    superfone_otp_template: str = "otp2"

    # Zoho Inventory
    zoho_client_id: Optional[str] = None
    zoho_client_secret: Optional[str] = None
    zoho_redirect_uri: Optional[str] = None
    zoho_organization_id: Optional[str] = None
    zoho_access_token: Optional[str] = None
    zoho_refresh_token: Optional[str] = None
    zoho_api_base: str = "https://www.zohoapis.in/inventory/v1"
    zoho_accounts_url: str = "https://accounts.zoho.in"

    # HTTP client timeout for third-party providers (seconds)
    http_timeout: float = 15.0

    # App
    app_name: str = "tecbunny-store-api"
    debug: bool = False
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    site_url: str = "http://localhost:3000"
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    rate_limit: str = "100/minute"  # slowapi format, e.g. "100/minute"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",
        extra="ignore"
    )


settings = Settings()
