# webapp/shared/config.py
from pydantic import BaseModel
import os

TEST_MODES = ("test", "integration")


class Settings(BaseModel):
    ENV: str = os.getenv("ENV", "production")
    PORT: int = int(os.getenv("PORT", "3000"))

    # Database
    DB_HOST: str = os.getenv("DB_HOST", "localhost")
    DB_PORT: int = int(os.getenv("DB_PORT", "3306"))
    DB_USER: str = os.getenv("DB_USER", "")
    DB_PASSWORD: str = os.getenv("DB_PASSWORD", os.getenv("DB_PASS", ""))  # both names are in use
    DB_NAME: str = os.getenv("DB_NAME", "")
    DB_DIALECT: str = os.getenv("DB_DIALECT", "mysql")
    DATABASE_URL: str | None = os.getenv("DATABASE_URL")

    # Startup reconnect loop
    DB_CONNECT_RETRIES: int = int(os.getenv("DB_CONNECT_RETRIES", "5"))
    DB_RETRY_BASE_SECONDS: float = float(os.getenv("DB_RETRY_BASE_SECONDS", "1.0"))
    DB_RETRY_MAX_SECONDS: float = float(os.getenv("DB_RETRY_MAX_SECONDS", "10.0"))

    # Object store
    S3_BUCKET_NAME: str = os.getenv("S3_BUCKET_NAME", "test-bucket-name")
    AWS_REGION: str = os.getenv("AWS_REGION", "us-east-1")
    AWS_ENDPOINT_URL: str | None = os.getenv("AWS_ENDPOINT_URL")
    PRESIGN_EXPIRE_SECONDS: int = int(os.getenv("PRESIGN_EXPIRE_SECONDS", "600"))

    # Uploads
    MAX_UPLOAD_BYTES: int = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))

    # Logging
    LOG_LEVEL: str | None = os.getenv("LOG_LEVEL")
    LOG_DIR: str | None = os.getenv("LOG_DIR")

    # Metrics over OTLP/HTTP; without an endpoint the instruments are no-ops
    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    OTEL_SERVICE_NAME: str = os.getenv("OTEL_SERVICE_NAME", "webapp")
    OTEL_EXPORT_INTERVAL_MS: int = int(os.getenv("OTEL_EXPORT_INTERVAL_MS", "60000"))

    @property
    def is_test(self) -> bool:
        return self.ENV.lower() in TEST_MODES

    @property
    def log_level(self) -> str:
        if self.LOG_LEVEL:
            return self.LOG_LEVEL.upper()
        return "WARNING" if self.is_test else "INFO"


settings = Settings()
