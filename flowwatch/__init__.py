"""
flowwatch - Binance futures trade-flow monitor

Watches aggressive taker flow per symbol and alerts on short squeezes and
long liquidations once the impulse shows signs of exhaustion.

Entry point: python -m flowwatch.main

Key Modules:
- flowwatch.signals: trade windows, candidate detection, exhaustion, cooldowns
- flowwatch.alerts: minute-aligned alert dispatch and formatting
- flowwatch.clients: Binance trade streams and the Telegram Bot API
- flowwatch.runtime: runtime thresholds and the commands that edit them
"""

__version__ = "1.0.0"
