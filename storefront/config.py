import os
from datetime import timedelta


def _env_list(name, default=""):
    raw = os.getenv(name, default)
    return [x.strip() for x in raw.split(",") if x.strip()]


class Config:
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JSON_SORT_KEYS = False
    ENV = os.getenv("FLASK_ENV", "development")
    TESTING = False

    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "dev-secret-change-me")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=int(os.getenv("JWT_ACCESS_HOURS", "1")))
    REFRESH_TOKEN_DAYS = int(os.getenv("REFRESH_TOKEN_DAYS", "7"))

    CORS_ORIGINS = _env_list("CORS_ORIGINS", "*")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # money / display
    CURRENCY_SYMBOL = os.getenv("CURRENCY_SYMBOL", "$")
    SHIPPING_FLAT_RATE = os.getenv("SHIPPING_FLAT_RATE", "5.00")
    API_TZ_OFFSET_HOURS = int(os.getenv("API_TZ_OFFSET_HOURS", "0"))

    @staticmethod
    def init_app(app):
        if not os.getenv("DATABASE_URL"):
            os.makedirs(app.instance_path, exist_ok=True)
            app.config["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{os.path.join(app.instance_path, 'app.db')}"
        else:
            app.config["SQLALCHEMY_DATABASE_URI"] = os.getenv("DATABASE_URL")


class TestConfig(Config):
    TESTING = True
    JWT_SECRET_KEY = "test-secret-key-with-enough-length-for-hs256"
    SHIPPING_FLAT_RATE = "5.00"
    LOG_LEVEL = "WARNING"

    @staticmethod
    def init_app(app):
        app.config["SQLALCHEMY_DATABASE_URI"] = "sqlite://"
