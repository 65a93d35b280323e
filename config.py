import os

from dotenv import load_dotenv

load_dotenv()


class Config:
    FLASK_ENV = os.getenv("FLASK_ENV", "production")
    FLASK_HOST = os.getenv("FLASK_HOST", "0.0.0.0")
    FLASK_PORT = int(os.getenv("FLASK_PORT", "6000"))

    DB_HOST = os.getenv("DB_HOST", "127.0.0.1")
    DB_PORT = int(os.getenv("DB_PORT", "5432"))
    DB_NAME = os.getenv("DB_NAME", "intellect")
    DB_USER = os.getenv("DB_USER", "postgres")
    DB_PASSWORD = os.getenv("DB_PASSWORD", "postgres")
    DB_URL_OVERRIDE = os.getenv("DATABASE_URL", "")

    SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() == "true"
    PERSIST_RESULTS = os.getenv("PERSIST_RESULTS", "true").lower() == "true"

    # "sql" reads products/sales from the database, "synthetic" generates a seeded demo catalog
    DATA_PROVIDER = os.getenv("DATA_PROVIDER", "sql")
    SYNTHETIC_SEED = int(os.getenv("SYNTHETIC_SEED", "42"))
    SYNTHETIC_PRODUCTS_PER_VERTICAL = int(os.getenv("SYNTHETIC_PRODUCTS_PER_VERTICAL", "4"))

    TRAIN_ON_STARTUP = os.getenv("TRAIN_ON_STARTUP", "true").lower() == "true"
    TRAINING_WORKERS = int(os.getenv("TRAINING_WORKERS", "4"))
    MODEL_STATE_PATH = os.getenv(
        "MODEL_STATE_PATH",
        os.path.join(os.path.dirname(__file__), "models", "saved", "ensemble_state.pkl")
    )

    OPENWEATHER_API_KEY = os.getenv("OPENWEATHER_API_KEY", "")
    OPENWEATHER_BASE_URL = os.getenv("OPENWEATHER_BASE_URL", "https://api.openweathermap.org/data/2.5")
    WORLD_BANK_BASE_URL = os.getenv("WORLD_BANK_BASE_URL", "https://api.worldbank.org/v2")
    WORLD_BANK_ENABLED = os.getenv("WORLD_BANK_ENABLED", "false").lower() == "true"
    TRENDS_API_URL = os.getenv("TRENDS_API_URL", "")
    TRENDS_API_KEY = os.getenv("TRENDS_API_KEY", "")

    EXTERNAL_TIMEOUT_SECONDS = float(os.getenv("EXTERNAL_TIMEOUT_SECONDS", "5"))
    EXTERNAL_MAX_ATTEMPTS = min(2, int(os.getenv("EXTERNAL_MAX_ATTEMPTS", "2")))
    EXTERNAL_RETRY_BACKOFF_SECONDS = float(os.getenv("EXTERNAL_RETRY_BACKOFF_SECONDS", "0.5"))
    EXTERNAL_CACHE_TTL_SECONDS = int(os.getenv("EXTERNAL_CACHE_TTL_SECONDS", "3600"))
    EXTERNAL_FACTORS_STRICT = os.getenv("EXTERNAL_FACTORS_STRICT", "false").lower() == "true"

    FORECAST_CACHE_TTL_SECONDS = int(os.getenv("FORECAST_CACHE_TTL_SECONDS", "900"))
    ORDERING_COST = float(os.getenv("ORDERING_COST", "50"))

    @property
    def DATABASE_URL(self):
        if self.DB_URL_OVERRIDE:
            return self.DB_URL_OVERRIDE
        return (
            f"postgresql+psycopg2://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


config = Config()
