import os
from pydantic import BaseModel

class Settings(BaseModel):
    # Basic
    ENV: str = os.getenv("ENV", "dev")
    DEFAULT_CURRENCY: str = os.getenv("CURRENCY", "USD")

    # Cache
    CACHE_TTL_SECONDS: int = int(os.getenv("CACHE_TTL_SECONDS", "1800"))            # per-subject valuations
    MARKET_CACHE_TTL_SECONDS: int = int(os.getenv("MARKET_CACHE_TTL_SECONDS", "21600"))  # per-geography context
    CACHE_MAXSIZE: int = int(os.getenv("CACHE_MAXSIZE", "4096"))
    CACHE_TIMEOUT_SECONDS: float = float(os.getenv("CACHE_TIMEOUT_SECONDS", "0.5"))
    USE_REDIS: bool = os.getenv("USE_REDIS", "false").lower() == "true"
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Inventory repository
    INVENTORY_PROVIDER: str = os.getenv("INVENTORY_PROVIDER", "mock")   # mock | memory | http
    INVENTORY_BASE_URL: str | None = os.getenv("INVENTORY_BASE_URL")
    INVENTORY_PATH: str | None = os.getenv("INVENTORY_PATH")            # JSON file for the memory provider
    REPOSITORY_TIMEOUT_SECONDS: float = float(os.getenv("REPOSITORY_TIMEOUT_SECONDS", "10"))

    # Market context
    MARKET_CONTEXT_ENABLED: bool = os.getenv("MARKET_CONTEXT_ENABLED", "true").lower() == "true"
    MARKET_CONTEXT_TIMEOUT_SECONDS: float = float(os.getenv("MARKET_CONTEXT_TIMEOUT_SECONDS", "3"))
    MARKET_CONTEXT_MONTHS: int = int(os.getenv("MARKET_CONTEXT_MONTHS", "12"))

    # Persistence
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./cma_engine.db")

    # Scoring weights (normalised by their sum at scoring time)
    SCORE_WEIGHT_PRICE: float = float(os.getenv("SCORE_WEIGHT_PRICE", "0.35"))
    SCORE_WEIGHT_SQFT: float = float(os.getenv("SCORE_WEIGHT_SQFT", "0.25"))
    SCORE_WEIGHT_DISTANCE: float = float(os.getenv("SCORE_WEIGHT_DISTANCE", "0.12"))
    SCORE_WEIGHT_RECENCY: float = float(os.getenv("SCORE_WEIGHT_RECENCY", "0.08"))
    SCORE_WEIGHT_BEDS: float = float(os.getenv("SCORE_WEIGHT_BEDS", "0.06"))
    SCORE_WEIGHT_BATHS: float = float(os.getenv("SCORE_WEIGHT_BATHS", "0.05"))
    SCORE_WEIGHT_YEAR: float = float(os.getenv("SCORE_WEIGHT_YEAR", "0.05"))
    SCORE_WEIGHT_LOT: float = float(os.getenv("SCORE_WEIGHT_LOT", "0.04"))

    # Step / mismatch penalties
    BED_STEP_PENALTY: float = float(os.getenv("BED_STEP_PENALTY", "0.25"))      # per bedroom of difference
    BATH_STEP_PENALTY: float = float(os.getenv("BATH_STEP_PENALTY", "0.25"))    # per bathroom of difference
    AMENITY_MISMATCH_PENALTY: float = float(os.getenv("AMENITY_MISMATCH_PENALTY", "0.05"))
    CONDITION_MISMATCH_PENALTY: float = float(os.getenv("CONDITION_MISMATCH_PENALTY", "0.03"))
    LOT_TOLERANCE_PCT: float = float(os.getenv("LOT_TOLERANCE_PCT", "50"))
    PARALLEL_SCORING_THRESHOLD: int = int(os.getenv("PARALLEL_SCORING_THRESHOLD", "500"))

    # Feature adjustments (dollar amounts unless noted)
    ADJUSTMENTS_ENABLED: bool = os.getenv("ADJUSTMENTS_ENABLED", "true").lower() == "true"
    ADJ_DEFAULT_PRICE_PER_SQFT: float = float(os.getenv("ADJ_DEFAULT_PRICE_PER_SQFT", "350"))  # when comps carry no area
    ADJ_POOL_VALUE: float = float(os.getenv("ADJ_POOL_VALUE", "50000"))
    ADJ_WATERFRONT_VALUE: float = float(os.getenv("ADJ_WATERFRONT_VALUE", "200000"))
    ADJ_LOCATION_RATE: float = float(os.getenv("ADJ_LOCATION_RATE", "5000"))           # per mile once a comp is over 1 mile away

    # Confidence
    CONFIDENCE_TARGET_COMPS: int = int(os.getenv("CONFIDENCE_TARGET_COMPS", "8"))
    CONFIDENCE_CV_CEILING: float = float(os.getenv("CONFIDENCE_CV_CEILING", "0.5"))
    CONFIDENCE_HIGH_THRESHOLD: float = float(os.getenv("CONFIDENCE_HIGH_THRESHOLD", "70"))
    CONFIDENCE_MEDIUM_THRESHOLD: float = float(os.getenv("CONFIDENCE_MEDIUM_THRESHOLD", "40"))

    # Security
    API_KEY: str | None = os.getenv("API_KEY")
    RATE_LIMIT_RPM: int = int(os.getenv("RATE_LIMIT_RPM", "60"))

    # CORS
    ALLOW_ORIGINS: str = os.getenv("ALLOW_ORIGINS", "*")

    # Metrics
    PROMETHEUS_ENABLED: bool = os.getenv("PROMETHEUS_ENABLED", "true").lower() == "true"

settings = Settings()
