"""
Tests for settings validation and gateway config construction.
"""
import pytest

from config import SEPAY_API_URLS, SEPAY_CHECKOUT_URLS, Settings
from domain.errors import GatewayConfigMissingError


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestGatewayConfig:

    @pytest.mark.unit
    def test_missing_vnpay_secret_is_reported_by_name(self):
        s = _settings(vnpay_tmn_code="TMN", vnpay_hash_secret="")
        with pytest.raises(GatewayConfigMissingError) as exc:
            s.vnpay_config()
        assert exc.value.missing == ["VNPAY_HASH_SECRET"]
        assert exc.value.status_code == 500

    @pytest.mark.unit
    def test_validate_gateway_settings_fails_fast(self):
        s = _settings(
            vnpay_tmn_code="TMN",
            vnpay_hash_secret="secret",
            sepay_merchant_id="",
            sepay_secret_key="",
        )
        with pytest.raises(GatewayConfigMissingError) as exc:
            s.validate_gateway_settings()
        assert exc.value.gateway == "sepay"
        assert exc.value.missing == ["SEPAY_MERCHANT_ID", "SEPAY_SECRET_KEY"]

    @pytest.mark.unit
    def test_vnpay_config_is_immutable(self):
        config = _settings(vnpay_tmn_code="TMN", vnpay_hash_secret="secret").vnpay_config()
        assert config.tmn_code == "TMN"
        with pytest.raises(AttributeError):
            config.hash_secret = "other"

    @pytest.mark.unit
    def test_sepay_urls_follow_environment(self):
        config = _settings(
            sepay_env="production", sepay_merchant_id="M", sepay_secret_key="K"
        ).sepay_config()
        assert config.checkout_url == SEPAY_CHECKOUT_URLS["production"]
        assert config.api_url == SEPAY_API_URLS["production"]

    @pytest.mark.unit
    def test_unknown_sepay_environment_falls_back_to_sandbox(self):
        config = _settings(sepay_env="staging", sepay_merchant_id="M", sepay_secret_key="K").sepay_config()
        assert config.env == "sandbox"
        assert config.checkout_url == SEPAY_CHECKOUT_URLS["sandbox"]

    @pytest.mark.unit
    def test_explicit_sepay_urls_win(self):
        config = _settings(
            sepay_merchant_id="M",
            sepay_secret_key="K",
            sepay_api_url="http://sepay.internal",
            gateway_timeout_seconds=3.5,
        ).sepay_config()
        assert config.api_url == "http://sepay.internal"
        assert config.timeout_seconds == 3.5


class TestProductionSettings:

    @pytest.mark.unit
    def test_plain_http_base_url_is_rejected(self):
        s = _settings(
            environment="production",
            app_base_url="http://shop.example",
            cors_origins="https://shop.example",
            cron_secret="c",
            admin_api_token="a",
        )
        with pytest.raises(ValueError, match="APP_BASE_URL"):
            s.validate_production_settings()

    @pytest.mark.unit
    def test_wildcard_cors_is_rejected(self):
        s = _settings(environment="production", cors_origins="*")
        with pytest.raises(ValueError, match="CORS_ORIGINS"):
            s.validate_production_settings()

    @pytest.mark.unit
    def test_missing_cron_secret_is_rejected(self):
        s = _settings(
            environment="production",
            app_base_url="https://shop.example",
            cors_origins="https://shop.example",
            admin_api_token="a",
        )
        with pytest.raises(ValueError, match="CRON_SECRET"):
            s.validate_production_settings()

    @pytest.mark.unit
    def test_complete_production_settings_pass(self):
        _settings(
            environment="production",
            app_base_url="https://shop.example",
            cors_origins="https://shop.example",
            cron_secret="c",
            admin_api_token="a",
        ).validate_production_settings()

    @pytest.mark.unit
    def test_development_only_warns(self):
        _settings(environment="development", cron_secret="", admin_api_token="").validate_production_settings()
