# crosswatch/config.py
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from crosswatch.candles.intervals import INTERVALS

# Loads variables from a local .env file into environment variables (dev only).
load_dotenv()


@dataclass(frozen=True)
class Settings:
    # App config
    app_env: str
    log_level: str
    provider: str
    watch_symbols: list[str]
    default_interval: str

    # Provider config (Binance public endpoints)
    binance_rest_url: str
    binance_ws_url: str
    quote_asset: str
    http_timeout_seconds: float

    # Stream connection policy
    ws_handshake_timeout: float
    ws_max_attempts: int
    ws_base_delay: float
    ws_max_delay: float

    # History refetch period per watched symbol (0 disables)
    history_refresh_seconds: float

    # Signal validation
    signal_volume_multiplier: float
    signal_trend_period: int
    signal_min_histogram_diff: float
    signal_consecutive_bars: int


def _env_float(name: str, default: str, minimum: Optional[float] = None) -> float:
    raw = os.getenv(name, default).strip()
    try:
        value = float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from None
    if minimum is not None and value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_int(name: str, default: str, minimum: int = 1) -> int:
    raw = os.getenv(name, default).strip()
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}, got {value}")
    return value


def get_settings() -> Settings:
    """
    Reads env vars and returns a Settings object.
    """
    watch_symbols = [
        s.strip().lower() for s in os.getenv("WATCH_SYMBOLS", "BTC").split(",") if s.strip()
    ]

    default_interval = os.getenv("DEFAULT_INTERVAL", "1h").strip()
    if default_interval not in INTERVALS:
        raise RuntimeError(
            f"DEFAULT_INTERVAL={default_interval!r} is not one of {', '.join(INTERVALS)}"
        )

    return Settings(
        app_env=os.getenv("APP_ENV", "local"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        provider=os.getenv("PROVIDER", "BINANCE"),
        watch_symbols=watch_symbols,
        default_interval=default_interval,
        binance_rest_url=os.getenv("BINANCE_REST_URL", "https://api.binance.com/api/v3").rstrip("/"),
        binance_ws_url=os.getenv("BINANCE_WS_URL", "wss://stream.binance.com:9443/ws"),
        quote_asset=os.getenv("QUOTE_ASSET", "usdt").strip().lower(),
        http_timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", "10"),
        ws_handshake_timeout=_env_float("WS_HANDSHAKE_TIMEOUT", "5"),
        ws_max_attempts=_env_int("WS_MAX_ATTEMPTS", "5"),
        ws_base_delay=_env_float("WS_BASE_DELAY", "1"),
        ws_max_delay=_env_float("WS_MAX_DELAY", "30"),
        history_refresh_seconds=_env_float("HISTORY_REFRESH_SECONDS", "10", minimum=0.0),
        signal_volume_multiplier=_env_float("SIGNAL_VOLUME_MULTIPLIER", "1.5"),
        signal_trend_period=_env_int("SIGNAL_TREND_PERIOD", "14", minimum=2),
        signal_min_histogram_diff=_env_float("SIGNAL_MIN_HISTOGRAM_DIFF", "1e-6"),
        signal_consecutive_bars=_env_int("SIGNAL_CONSECUTIVE_BARS", "3", minimum=2),
    )
