"""
Configuration management for the storefront cart core.
Loads settings from environment variables and AWS Secrets Manager.
"""
import os
import json
import logging
import boto3
from typing import Optional

logger = logging.getLogger(__name__)


class Config:
    """Application configuration"""

    # Application settings
    APP_PORT: int = int(os.getenv("APP_PORT", "8000"))
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "agrocart")
    REGION: str = os.getenv("REGION", "ap-southeast-1")

    # Redis settings (server-held cart)
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_AUTH_TOKEN: Optional[str] = os.getenv("REDIS_AUTH_TOKEN")
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_SSL: bool = os.getenv("REDIS_SSL", "false").lower() in ("1", "true", "yes")

    # Cart settings
    CART_TTL_SECONDS: int = int(os.getenv("CART_TTL_SECONDS", str(30 * 24 * 60 * 60)))  # 30 days default
    MAX_LINES_PER_CART: int = int(os.getenv("MAX_LINES_PER_CART", "200"))
    CART_STORAGE_KEY: str = os.getenv("CART_STORAGE_KEY", "cart")
    CART_STORAGE_DIR: str = os.getenv("CART_STORAGE_DIR", ".agrocart")
    DEFAULT_MEASUREMENT_INCREMENT: float = float(os.getenv("DEFAULT_MEASUREMENT_INCREMENT", "0.25"))

    # Upstream HTTP services
    CATALOG_API_URL: str = os.getenv("CATALOG_API_URL", "http://localhost:5000/api")
    CART_API_URL: str = os.getenv("CART_API_URL", "http://localhost:8000")
    HTTP_TIMEOUT_SECONDS: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))

    # Redis connection settings
    REDIS_SOCKET_CONNECT_TIMEOUT: int = 5
    REDIS_SOCKET_TIMEOUT: int = 5
    REDIS_RETRY_ON_TIMEOUT: bool = True
    REDIS_MAX_CONNECTIONS: int = 50
    REDIS_MAX_RETRIES: int = int(os.getenv("REDIS_MAX_RETRIES", "3"))
    REDIS_INITIAL_BACKOFF_SECONDS: float = 0.1
    REDIS_MAX_BACKOFF_SECONDS: float = 2.0

    @classmethod
    def redis_url(cls) -> str:
        """Build the Redis connection URL"""
        scheme = "rediss" if cls.REDIS_SSL else "redis"
        auth = f":{cls.REDIS_AUTH_TOKEN}@" if cls.REDIS_AUTH_TOKEN else ""
        return f"{scheme}://{auth}{cls.REDIS_HOST}:{cls.REDIS_PORT}/{cls.REDIS_DB}"

    @classmethod
    def load_redis_secrets(cls) -> None:
        """Load Redis authentication token from AWS Secrets Manager"""
        if cls.REDIS_AUTH_TOKEN:
            return  # Already loaded from environment

        secret_name = os.getenv("REDIS_SECRET_NAME")
        if not secret_name:
            return  # No secret name provided, use no auth

        try:
            client = boto3.client("secretsmanager", region_name=cls.REGION)
            response = client.get_secret_value(SecretId=secret_name)
            secret_data = json.loads(response["SecretString"])

            cls.REDIS_AUTH_TOKEN = secret_data.get("auth_token")
            if "endpoint" in secret_data:
                cls.REDIS_HOST = secret_data["endpoint"]
        except Exception as e:
            logger.warning(f"Could not load Redis secrets from Secrets Manager: {e}")
            # Continue without auth token (may fail on connection)


# Load secrets at module import
Config.load_redis_secrets()
