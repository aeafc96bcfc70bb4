# settings.py
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Project
    PROJECT_NAME: str = "Chaos Stickers Backend"
    API_PREFIX: str = "/api"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./dev.db"  # default local SQLite

    # Stripe
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""

    # Printify
    PRINTIFY_API_KEY: str = ""
    PRINTIFY_SHOP_ID: str = ""
    PRINTIFY_API_URL: str = "https://api.printify.com/v1"
    PRINTIFY_BLUEPRINT_ID: int = 1268  # Kiss-Cut Vinyl Stickers
    PRINTIFY_PRINT_PROVIDER_ID: int = 215
    PRINTIFY_VARIANT_PRICE_CENTS: int = 799
    PRINTIFY_SHIPPING_METHOD: int = 1
    VENDOR_TIMEOUT_SECONDS: float = 30.0

    # Email (Brevo)
    BREVO_API_KEY: str = ""
    EMAIL_SENDER: str = ""
    EMAIL_SENDER_NAME: str = "Chaos Stickers"

    # Frontend URL (CORS + tracking links)
    FRONTEND_URL: str = "http://localhost:5173"
    CORS_ORIGINS: str = "*"

    # Order confirmation polling
    CONFIRM_POLL_ATTEMPTS: int = 7
    CONFIRM_POLL_DELAY_SECONDS: float = 3.0

    class Config:
        env_file = ".env"
        case_sensitive = True


# Instantiate settings globally
settings = Settings()


def get_settings() -> Settings:
    """FastAPI dependency returning the process-wide settings."""
    return settings
