"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic_settings import BaseSettings


class SamitiConfig(BaseSettings):
    """Samiti thrift society configuration"""
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout
    
    # Calendar rules
    min_system_date: date = date(2010, 1, 1)  # Earlier dates are clamped, never rejected
    maturity_grace_days: int = 3
    interest_max_catchup_periods: int = 600  # Secondary bound on the accrual loop
    
    # Deposit interest rates (percent per annum)
    rate_optional_deposit: Decimal = Decimal("3.5")
    rate_fixed_deposit: Decimal = Decimal("6.8")
    rate_recurring_deposit: Decimal = Decimal("6.5")
    rate_compulsory_deposit: Decimal = Decimal("10.0")
    rate_share_capital: Decimal = Decimal("10.0")
    
    # Loan interest rates (percent per annum)
    rate_home_loan: Decimal = Decimal("8.5")
    rate_personal_loan: Decimal = Decimal("12")
    rate_gold_loan: Decimal = Decimal("9")
    rate_agriculture_loan: Decimal = Decimal("7")
    rate_vehicle_loan: Decimal = Decimal("10")
    rate_emergency_loan: Decimal = Decimal("14")
    
    # Default terms (months)
    term_fixed_deposit: int = 12
    term_recurring_deposit: int = 24
    term_home_loan: int = 120
    term_personal_loan: int = 36
    term_gold_loan: int = 12
    term_agriculture_loan: int = 24
    term_vehicle_loan: int = 36
    term_emergency_loan: int = 12
    
    # Registration fees
    fee_building_fund: Decimal = Decimal("450")
    fee_share_money: Decimal = Decimal("400")
    fee_compulsory_deposit: Decimal = Decimal("200")
    fee_welfare_fund: Decimal = Decimal("400")
    fee_entry_charge: Decimal = Decimal("100")
    loan_processing_fee: Decimal = Decimal("700")  # Charged on flat-rate loans
    
    # Business rules
    loans_require_approval: bool = True
    import_max_pending_previews: int = 50  # Oldest uncommitted previews are dropped beyond this
    
    class Config:
        env_prefix = "SAMITI_"
        env_file = ".env"
        case_sensitive = False
    
    @property
    def total_registration_fees(self) -> Decimal:
        return (
            self.fee_building_fund + self.fee_share_money + self.fee_compulsory_deposit
            + self.fee_welfare_fund + self.fee_entry_charge
        )


# Global configuration instance
config = SamitiConfig()


def get_config() -> SamitiConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> SamitiConfig:
    """Reload configuration from environment"""
    global config
    config = SamitiConfig()
    return config
