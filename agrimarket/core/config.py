from decimal import Decimal
from typing import List

from pydantic_settings import BaseSettings
from pydantic import Field

class Settings(BaseSettings):
    PROJECT_NAME: str = "Agrimarket API"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = ""
    DATABASE_URL: str = "sqlite:///./agrimarket.db"
    SECRET_KEY: str = "supersecretkey_change_me_in_production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7 # 1 week
    CORS_ORIGINS: List[str] = ["*"]

    # Marketplace policy
    COMMISSION_RATE: Decimal = Decimal("0.07")
    LOW_STOCK_THRESHOLD: int = 10
    NOTIFICATION_RETENTION_DAYS: int = 30

    # Razorpay
    RAZORPAY_KEY_ID: str = "rzp_test_placeholder"
    RAZORPAY_KEY_SECRET: str = "rzp_secret_placeholder"
    RAZORPAY_WEBHOOK_SECRET: str = "webhook_secret"
    PAYMENT_CURRENCY: str = "INR"

    # Outgoing mail
    MAIL_ENABLED: bool = True
    MAIL_USERNAME: str = Field("orders@agrimarket.local", validation_alias="MAIL_USERNAME")
    MAIL_PASSWORD: str = Field("", validation_alias="MAIL_PASSWORD")
    MAIL_FROM: str = Field("orders@agrimarket.local", validation_alias="MAIL_FROM")
    MAIL_PORT: int = Field(465, validation_alias="MAIL_PORT")
    MAIL_SERVER: str = Field("localhost", validation_alias="MAIL_SERVER")
    MAIL_SSL: bool = Field(True, validation_alias="MAIL_SSL")

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
