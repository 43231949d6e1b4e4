import os
from pathlib import Path
BASE_DIR = Path(__file__).resolve().parent

class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{(BASE_DIR / 'skilllink.db').as_posix()}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    ACCESS_TOKEN_MAX_AGE = int(os.environ.get("ACCESS_TOKEN_MAX_AGE", 15 * 60))
    REFRESH_TOKEN_MAX_AGE = int(os.environ.get("REFRESH_TOKEN_MAX_AGE", 7 * 24 * 3600))
    REFRESH_COOKIE_SECURE = os.environ.get("REFRESH_COOKIE_SECURE", "0") == "1"
    PASSWORD_MIN_LENGTH = 8

    CLIENT_URL = os.environ.get("CLIENT_URL", "http://localhost:5173")
    LEADERBOARD_SIZE = 50

    # mail is skipped (and logged) unless username and password are set
    MAIL_SERVER = os.environ.get("MAIL_SERVER", "smtp.gmail.com")
    MAIL_PORT = int(os.environ.get("MAIL_PORT", 587))
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME", "")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD", "")
    MAIL_FROM = os.environ.get("MAIL_FROM", "noreply@skilllink.local")
    MAIL_FROM_NAME = os.environ.get("MAIL_FROM_NAME", "SkillLink")

class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    MAIL_USERNAME = ""
    MAIL_PASSWORD = ""
