"""Application configuration via environment variables."""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./donations.db"
    log_level: str = "INFO"
    site_url: str = "http://localhost:8000/"
    trade_description: str = "佳里廣澤信仰宗教協會捐獻"
    admin_api_token: Optional[str] = None

    # Gateway selection
    default_payment_gateway: str = "ecpay"
    site_setting_cache_ttl: int = 3600  # seconds
    reject_unverified_callbacks: bool = True

    # ECPay (sandbox merchant unless overridden)
    ecpay_merchant_id: str = "3002599"
    ecpay_hash_key: str = "spPjZn66i0OhqJsQ"
    ecpay_hash_iv: str = "hT5OJckN45isQTTs"
    ecpay_api_url: str = "https://payment-stage.ecpay.com.tw/Cashier/AioCheckOut/V5"

    # Newebpay (sandbox merchant unless overridden)
    newebpay_merchant_id: str = "MS357716166"
    newebpay_hash_key: str = "WCIjMFz3FyyCpGK31iJGn2JdV9zydikI"
    newebpay_hash_iv: str = "CTTibOlBaX9lJzQP"
    newebpay_api_url: str = "https://ccore.newebpay.com/MPG/mpg_gateway"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
