import os
from dotenv import load_dotenv
load_dotenv()

class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
    SQLALCHEMY_DATABASE_URI = os.getenv("SQLALCHEMY_DATABASE_URI", "sqlite:///app.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    MAX_CONTENT_LENGTH = int(os.getenv("MAX_CONTENT_LENGTH", 16 * 1024 * 1024))  # 16 MB default upload cap
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # auth
    API_TOKEN_MAX_AGE = int(os.getenv("API_TOKEN_MAX_AGE", 12 * 60 * 60))
    PASSWORD_RESET_TTL = int(os.getenv("PASSWORD_RESET_TTL", 60 * 60))
    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:3000")

    # object storage
    AWS_REGION = os.getenv("AWS_REGION", "us-east-1")
    AWS_ACCESS_KEY_ID = os.getenv("AWS_ACCESS_KEY_ID")
    AWS_SECRET_ACCESS_KEY = os.getenv("AWS_SECRET_ACCESS_KEY")
    AWS_S3_BUCKET_NAME = os.getenv("AWS_S3_BUCKET_NAME", "assessment-sources")
    PRESIGNED_URL_TTL = int(os.getenv("PRESIGNED_URL_TTL", 3600))

    # grading
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
    GRADING_MODEL = os.getenv("GRADING_MODEL", "gpt-4o")
    GRADING_MAX_TOKENS = int(os.getenv("GRADING_MAX_TOKENS", 4000))
    GRADING_TEMPERATURE = float(os.getenv("GRADING_TEMPERATURE", 0.3))

    # mail
    MAIL_SERVER = os.getenv("MAIL_SERVER")
    MAIL_PORT = int(os.getenv("MAIL_PORT", 587))
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_USE_TLS = os.getenv("MAIL_USE_TLS", "1") == "1"
    MAIL_SENDER = os.getenv("MAIL_SENDER", "noreply@example.com")
