from typing import Optional

from crosswatch.config import Settings, get_settings
from crosswatch.providers.base import MarketDataProvider
from crosswatch.providers.binance import BinanceProvider


def get_provider(settings: Optional[Settings] = None) -> MarketDataProvider:
    """
    Provider loader / factory.

    Reads PROVIDER from config and returns an instance of the selected provider.
    This is the single place that knows about concrete providers.
    """
    settings = settings or get_settings()
    provider_name = settings.provider.strip().upper()

    if provider_name == "BINANCE":
        return BinanceProvider(
            base_url=settings.binance_rest_url,
            quote_asset=settings.quote_asset,
            timeout_s=settings.http_timeout_seconds,
        )

    raise ValueError(f"Unknown PROVIDER='{settings.provider}'. Expected: BINANCE")
