"""Application configuration using Pydantic Settings."""
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # App
    app_name: str = "SL Accounting LMS"
    debug: bool = False
    brand_name: str = "SL Accounting"
    admin_phone: str = ""
    default_timezone: str = "Asia/Colombo"

    # Seeded admin account
    admin_email: str = "admin@slaccounting.lk"
    admin_password: str = "ChangeMe123!"

    # Receipt
    business_address: str = ""
    receipt_footer: str = "Thank you for learning with us."

    # MongoDB
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "sl_accounting_lms"

    # JWT
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60
    jwt_refresh_token_expire_days: int = 30
    max_login_attempts: int = 5

    # AWS S3
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""
    aws_region: str = "ap-south-1"
    s3_bucket_uploads: str = "sl-accounting-uploads"

    # Zoom (Server-to-Server OAuth)
    zoom_account_id: str = ""
    zoom_client_id: str = ""
    zoom_client_secret: str = ""
    zoom_user_id: str = "me"
    zoom_api_base: str = "https://api.zoom.us/v2"
    zoom_oauth_url: str = "https://zoom.us/oauth/token"
    zoom_webhook_secret: str = ""

    # PayHere
    payhere_merchant_id: str = ""
    payhere_merchant_secret: str = ""
    payhere_currency: str = "LKR"
    payhere_sandbox: bool = True
    payhere_return_url: str = ""
    payhere_cancel_url: str = ""
    payhere_notify_url: str = ""

    # SMS (Text.lk)
    sms_driver: str = "textlk"
    textlk_api_key: str = ""
    textlk_sender_id: str = ""
    textlk_api_url: str = "https://app.text.lk/api/v3/sms/send"

    # Email (Zoho Mail)
    zoho_client_id: str = ""
    zoho_client_secret: str = ""
    zoho_refresh_token: str = ""
    zoho_account_id: str = ""
    zoho_from_address: str = ""
    zoho_oauth_domain: str = "https://accounts.zoho.com"
    zoho_mail_api: str = "https://mail.zoho.com/api"

    # Session generator
    session_generator_enabled: bool = True
    session_generator_interval_seconds: int = 300
    session_lookahead_days: int = 14
    session_topup_weeks: int = 4

    # CORS (comma-separated origins, e.g. "https://app.slaccounting.lk,https://admin.slaccounting.lk")
    cors_origins: str = "http://localhost:5173"
    allow_edit_default_roles: bool = False

    @model_validator(mode="after")
    def _validate_production_secrets(self):
        if not self.debug:
            if self.jwt_secret_key in ("change-me-in-production", ""):
                raise ValueError(
                    "JWT_SECRET_KEY must be set to a strong secret when DEBUG is not enabled. "
                    "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
                )
        return self


settings = Settings()
