from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # === Storage ===
    db_path: str = ""  # empty -> data/ledger.db

    # === Venue / price feed ===
    default_venue: str = "binance"
    default_currency: str = "INR"
    price_feed_base_url: str = "https://api.binance.com"
    external_call_timeout_sec: float = 30.0  # payment / price-feed calls

    # === SIP scheduler ===
    sip_sweep_interval_sec: int = 3600  # hourly sweep
    sip_retry_delay_min: int = 60  # short retry after a failed execution
    sip_max_failures: int = 3  # consecutive failures before PAUSED
    sip_claim_lease_sec: int = 300  # must exceed external_call_timeout_sec x 2
    sip_volatility_symbol: str = "BTC/USDT"  # market used for frequency suggestions

    # === Tax ===
    long_term_holding_days: int = 365
    tax_jurisdiction: str = "IN"

    # === Backtest ===
    backtest_stop_loss_pct: float = 5.0
    backtest_take_profit_pct: float = 10.0
    backtest_max_workers: int = 4

    # Telegram (optional)
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    # === Logging ===
    structured_logging: bool = False


settings = Settings()
