"""
Order Ledger - Settings Tests
"""
import pytest
from pydantic import ValidationError

from orderledger.core.config import Settings


class TestSettings:
    def test_currency_codes_are_normalised(self):
        settings = Settings(LOCAL_CURRENCY=" pkr ", BASE_CURRENCY="usd")
        assert settings.LOCAL_CURRENCY == "PKR"
        assert settings.BASE_CURRENCY == "USD"

    @pytest.mark.parametrize("field,value", [
        ("LOCAL_CURRENCY", "RUPEE"),
        ("FISCAL_YEAR_START_MONTH", 13),
        ("INVOICE_DUE_DAYS", -1),
    ])
    def test_rejects_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            Settings(**{field: value})

    def test_file_database_url(self):
        assert Settings(DATABASE_URL="file:/data/ledger.db").database_url == "sqlite:////data/ledger.db"

    def test_production_refuses_default_secret(self):
        settings = Settings(ENVIRONMENT="production")
        with pytest.raises(ValueError):
            settings.validate_security_settings()

    def test_production_accepts_real_secret(self):
        settings = Settings(ENVIRONMENT="production", SECRET_KEY="k" * 40)
        assert settings.validate_security_settings()
