"""New-listing candle collector for Binance spot."""
