from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_JWT_SECRET = "change-me-in-production"


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env")

    app_name: str = "CardTrader"
    debug: bool = False
    log_level: str = "INFO"

    host: str = "0.0.0.0"
    port: int = 5000

    database_url: str = "postgresql+asyncpg://localhost:5432/cardtrader"

    # Token signing
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    token_expiry_minutes: int = 60

    bcrypt_rounds: int = 12

    # When True, any authenticated user may claim or trade away a card
    # that has no owner yet
    allow_unowned_claims: bool = True

    starter_card_count: int = 1
    random_card_count: int = 5

    # Card seeding from the Pokemon TCG API
    seed_on_startup: bool = True
    seed_card_limit: int = 50
    pokemon_api_url: str = "https://api.pokemontcg.io/v2"
    pokemon_api_key: str = ""


settings = Settings()


def get_settings() -> Settings:
    """Dependency that provides the active settings."""
    return settings
