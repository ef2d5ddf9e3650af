from decimal import Decimal
from typing import Optional
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file="partnerledger/.env",
        env_file_encoding="utf-8",
        extra="allow",
    )
    # Application
    APP_NAME: str = "Partner Token Ledger API"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USERNAME: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DATABASE: str = "postgres"
    POSTGRES_SCHEMA: str = "ledger"

    # 지정하면 POSTGRES_* 조합 대신 그대로 사용 (테스트/로컬 SQLite 등)
    DATABASE_URL: Optional[str] = None
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    @property
    def database_url(self) -> str:
        """Construct database URL from individual components"""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        # URL encode the password to handle special characters
        encoded_password = quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql+psycopg2://{self.POSTGRES_USERNAME}:{encoded_password}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DATABASE}"

    # Transactions
    TX_MAX_WAIT_MS: int = 5000  # 커넥션 풀 대기 한도
    TX_TIMEOUT_MS: int = 10000  # 일반 트랜잭션 실행 한도
    TX_LEDGER_TIMEOUT_MS: int = 15000  # 잔액 변경 트랜잭션 실행 한도
    TX_MAX_ATTEMPTS: int = 3
    TX_RETRY_BASE_DELAY_MS: int = 100

    # Security
    SECRET_KEY: str = ""
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Notifications
    NOTIFICATIONS_ENABLED: bool = True
    SQS_NOTIFICATION_QUEUE: Optional[str] = None
    AWS_REGION: str = "ap-northeast-2"
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    SQS_ENDPOINT_URL: Optional[str] = None

    # Ledger
    DEFAULT_INITIAL_AMOUNT: Decimal = Decimal("0")
    HISTORY_PAGE_MAX: int = 100


settings = Settings()
