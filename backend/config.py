"""
Configuration management for the storefront payments backend.

Loads settings from .env via pydantic-settings. Gateway credentials are turned
into immutable per-gateway config objects once, at startup, and injected into
the adapters (see services/gateways/).

Security notes:
    - Redirect targets are always built from APP_BASE_URL, never from the request
    - validate_production_settings() enforces strict CORS / secrets in production
    - validate_gateway_settings() fails fast when a gateway secret is missing
"""
import logging
from dataclasses import dataclass
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


SEPAY_CHECKOUT_URLS = {
    "sandbox": "https://pay-sandbox.sepay.vn/v1/checkout/init",
    "production": "https://pay.sepay.vn/v1/checkout/init",
}

SEPAY_API_URLS = {
    "sandbox": "https://pgapi-sandbox.sepay.vn",
    "production": "https://pgapi.sepay.vn",
}


@dataclass(frozen=True)
class VNPayConfig:
    """Credentials and endpoints for the VNPay redirect gateway."""
    tmn_code: str
    hash_secret: str
    url: str
    return_url: str
    expire_minutes: int = 15


@dataclass(frozen=True)
class SePayConfig:
    """Credentials and endpoints for the SePay form-post gateway."""
    env: str
    merchant_id: str
    secret_key: str
    checkout_url: str
    api_url: str
    return_url: str = ""
    trust_callback_transport: bool = True
    timeout_seconds: float = 10.0


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── Application ─────────────────────────────────────────────────
    environment: str = "development"
    app_base_url: str = "http://localhost:3000"   # trusted origin for all redirects
    admin_api_token: str = ""
    cron_secret: str = ""

    # ── Database ────────────────────────────────────────────────────
    database_url: str = "sqlite:///./data/storefront.db"

    # ── Order lifecycle ─────────────────────────────────────────────
    order_expiry_minutes: int = 10        # unpaid PENDING orders are cancelled after this
    auto_receive_days: int = 7            # DELIVERED orders auto-confirm after this
    order_tax_rate: str = "0.10"
    order_number_prefix: str = "ORD"

    # ── Reaper ──────────────────────────────────────────────────────
    reaper_enabled: bool = True
    reaper_interval_seconds: int = 60

    # ── VNPay (bank transfer / redirect) ────────────────────────────
    vnpay_tmn_code: str = ""
    vnpay_hash_secret: str = ""
    vnpay_url: str = "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
    vnpay_return_url: str = "http://localhost:8000/payments/vnpay/callback"
    vnpay_expire_minutes: int = 15

    # ── SePay (card / QR, form post) ────────────────────────────────
    sepay_env: str = "sandbox"            # sandbox | production
    sepay_merchant_id: str = ""
    sepay_secret_key: str = ""
    sepay_return_url: str = "http://localhost:8000/payments/sepay/callback"
    sepay_checkout_url: str = ""          # empty => derived from sepay_env
    sepay_api_url: str = ""               # empty => derived from sepay_env
    sepay_trust_callback_transport: bool = True

    # ── Outbound HTTP ───────────────────────────────────────────────
    gateway_timeout_seconds: float = 10.0

    # ── CORS ────────────────────────────────────────────────────────
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # allow unknown .env keys without crashing
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    def vnpay_config(self) -> VNPayConfig:
        """Build the VNPay config object, failing fast on missing credentials."""
        missing = [
            name for name, value in (
                ("VNPAY_TMN_CODE", self.vnpay_tmn_code),
                ("VNPAY_HASH_SECRET", self.vnpay_hash_secret),
            ) if not value
        ]
        if missing:
            from domain.errors import GatewayConfigMissingError
            raise GatewayConfigMissingError("vnpay", missing)
        return VNPayConfig(
            tmn_code=self.vnpay_tmn_code,
            hash_secret=self.vnpay_hash_secret,
            url=self.vnpay_url,
            return_url=self.vnpay_return_url,
            expire_minutes=self.vnpay_expire_minutes,
        )

    def sepay_config(self) -> SePayConfig:
        """Build the SePay config object, failing fast on missing credentials."""
        missing = [
            name for name, value in (
                ("SEPAY_MERCHANT_ID", self.sepay_merchant_id),
                ("SEPAY_SECRET_KEY", self.sepay_secret_key),
            ) if not value
        ]
        if missing:
            from domain.errors import GatewayConfigMissingError
            raise GatewayConfigMissingError("sepay", missing)
        env = self.sepay_env if self.sepay_env in SEPAY_CHECKOUT_URLS else "sandbox"
        return SePayConfig(
            env=env,
            merchant_id=self.sepay_merchant_id,
            secret_key=self.sepay_secret_key,
            checkout_url=self.sepay_checkout_url or SEPAY_CHECKOUT_URLS[env],
            api_url=self.sepay_api_url or SEPAY_API_URLS[env],
            return_url=self.sepay_return_url,
            trust_callback_transport=self.sepay_trust_callback_transport,
            timeout_seconds=self.gateway_timeout_seconds,
        )

    def validate_gateway_settings(self) -> None:
        """
        Build every gateway config once so missing secrets abort startup.

        Raises GatewayConfigMissingError instead of letting the first callback
        discover the problem.
        """
        self.vnpay_config()
        self.sepay_config()
        logger.info("Gateway configuration validated (vnpay, sepay)")

    def validate_production_settings(self):
        """
        Validate settings for production safety.

        Called during app startup.
        """
        if self.environment == "production":
            if "*" in self.cors_origins:
                raise ValueError(
                    "CORS_ORIGINS must not contain '*' in production. "
                    "Set explicit allowed origins."
                )
            if not self.app_base_url.startswith("https://"):
                raise ValueError(
                    "APP_BASE_URL must be an https:// origin in production. "
                    "All payment redirects are built from it."
                )
            if not self.cron_secret:
                raise ValueError(
                    "CRON_SECRET must be set in production. "
                    "It protects the order cleanup trigger."
                )
            if not self.admin_api_token:
                raise ValueError(
                    "ADMIN_API_TOKEN must be set in production. "
                    "It protects forced order transitions."
                )
            logger.info("Production settings validated")
        else:
            warnings = []
            if not self.cron_secret:
                warnings.append("CRON_SECRET empty (cleanup trigger is unauthenticated)")
            if not self.admin_api_token:
                warnings.append("ADMIN_API_TOKEN empty (admin routes are disabled)")
            if "*" in self.cors_origins:
                warnings.append("CORS_ORIGINS contains '*' (open access)")
            for w in warnings:
                logger.warning(w)


# Global settings instance
settings = Settings()
