from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CoreSettings(BaseSettings):
    ENV: str = Field(default="development", validation_alias="APP_ENV")
    APP_NAME: str = "chamafrete-api"
    APP_BASE_URL: str = "https://chamafrete.com.br"
    LOG_LEVEL: str = "INFO"

    # Freight lifecycle
    FREIGHT_POST_COOLDOWN_SECONDS: int = 60
    FREIGHT_EXPIRY_DAYS: int = 7
    FEATURED_FREIGHT_EXPIRY_DAYS: int = 30
    FREIGHT_DEFAULT_PER_PAGE: int = 15
    FREIGHT_MAX_PER_PAGE: int = 100
    SLUG_MAX_ATTEMPTS: int = 5

    # Content filter
    BANNED_WORDS: str = "idiota,golpe,urubu do pix,ganhe dinheiro fácil,site-concorrente.com,maldito,desgraça"
    MAX_LINKS_IN_CONTENT: int = 2

    # Matching
    MATCH_CANDIDATE_LIMIT: int = 100

    # Ads and credits
    AD_DEFAULT_LIMIT: int = 5
    AD_MAX_LIMIT: int = 20
    AD_COST_VIEW: float = 1.00
    AD_COST_VIEW_DETAILS: float = 2.00
    AD_COST_CLICK: float = 5.00
    AD_COST_WHATSAPP_CLICK: float = 10.00
    PRICING_REFRESH_SECONDS: int = 300

    # Reputation
    VERIFICATION_POINTS_THRESHOLD: int = 80
    VERIFICATION_MIN_REVIEWS: int = 5
    VERIFICATION_MIN_RATING: float = 4.5

    # Outbound channels
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_CHAT_ID: str = ""
    TELEGRAM_API_BASE: str = "https://api.telegram.org"
    PUSH_API_URL: str = ""
    PUSH_API_KEY: str = ""
    OUTBOUND_TIMEOUT_SECONDS: int = 5

    NOTIFICATION_RETENTION_DAYS: int = 30

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CoreSettings()


def banned_words() -> tuple[str, ...]:
    return tuple(w.strip().lower() for w in settings.BANNED_WORDS.split(",") if w.strip())
