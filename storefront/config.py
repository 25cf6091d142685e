"""
Configuration management for the storefront pricing service.
Loads settings from environment variables and AWS Secrets Manager.
"""
import os
import json
import logging
import boto3
from decimal import Decimal
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _get_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    """Application configuration"""

    # Application settings
    APP_PORT: int = int(os.getenv("APP_PORT", "8000"))
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "storefront-pricing")
    REGION: str = os.getenv("REGION", "ap-southeast-2")
    CORS_ORIGINS: List[str] = _get_list("CORS_ORIGINS", "*")

    # Admin API key for /admin routes
    ADMIN_API_KEY: Optional[str] = os.getenv("ADMIN_API_KEY")

    # Redis settings
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_AUTH_TOKEN: Optional[str] = os.getenv("REDIS_AUTH_TOKEN")
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_SSL: bool = os.getenv("REDIS_SSL", "false").lower() in ("1", "true", "yes")

    # Cart settings
    CART_TTL_SECONDS: int = int(os.getenv("CART_TTL_SECONDS", str(7 * 24 * 60 * 60)))  # 7 days default
    GUEST_CART_TTL_SECONDS: int = int(os.getenv("GUEST_CART_TTL_SECONDS", str(1 * 24 * 60 * 60)))  # 1 day for guests
    MAX_ITEMS_PER_CART: int = int(os.getenv("MAX_ITEMS_PER_CART", "200"))
    MAX_QUANTITY_PER_ITEM: int = int(os.getenv("MAX_QUANTITY_PER_ITEM", "99"))

    # Orders
    ORDER_TTL_SECONDS: int = int(os.getenv("ORDER_TTL_SECONDS", str(30 * 24 * 60 * 60)))

    # Coupons
    COUPON_CODE_MAX_LENGTH: int = int(os.getenv("COUPON_CODE_MAX_LENGTH", "32"))

    # Largest accepted price or subtotal
    MAX_MONEY: Decimal = Decimal(os.getenv("MAX_MONEY", "1000000000"))

    # Redis connection settings
    REDIS_SOCKET_CONNECT_TIMEOUT: int = 5
    REDIS_SOCKET_TIMEOUT: int = 5
    REDIS_RETRY_ON_TIMEOUT: bool = True
    REDIS_MAX_CONNECTIONS: int = 50

    @classmethod
    def load_secrets(cls) -> None:
        """Load Redis auth token and admin key from AWS Secrets Manager"""
        if cls.REDIS_AUTH_TOKEN and cls.ADMIN_API_KEY:
            return  # Already loaded from environment

        secret_name = os.getenv("SECRETS_NAME")
        if not secret_name:
            return

        try:
            client = boto3.client("secretsmanager", region_name=cls.REGION)
            response = client.get_secret_value(SecretId=secret_name)
            secret_data = json.loads(response["SecretString"])

            cls.REDIS_AUTH_TOKEN = cls.REDIS_AUTH_TOKEN or secret_data.get("redis_auth_token")
            cls.ADMIN_API_KEY = cls.ADMIN_API_KEY or secret_data.get("admin_api_key")
            if "redis_endpoint" in secret_data:
                cls.REDIS_HOST = secret_data["redis_endpoint"]
        except Exception as e:
            logger.warning(f"Could not load secrets from Secrets Manager: {e}")


# Load secrets at module import
Config.load_secrets()
