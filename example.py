from fx_bolivar import FxBolivar

print(FxBolivar.__version__)  # 0.1.0

# Default Usage: settings come from the environment (and a local .env file)
fx = FxBolivar()

# Latest rates, served from the five-minute cache when fresh
rates = fx.current_rates()
print(rates)
# => {'cache': 'miss', 'fetched_at': '...', 'rates': [{'source': 'official', 'mid': 36.52, ...}, ...]}

# Skip the cache and ask every upstream again
print(fx.force_refresh()["cache"])

# Ask every source once and see which ones answer
print(fx.diagnose()["sources"])

# Daily history for charts (one point per day, oldest first)
history = fx.historical(days=30)
print(history[:2])
# => [{'date': '2026-09-19', 'official': 36.1, 'parallel': 58.9, 'secondary': 39.8, ...}, ...]

# Record externally supplied rates as today's row
print(fx.commit_historical(official=36.6, parallel=61.2, secondary=40.3))

# Telegram subscribers (requires TELEGRAM_BOT_TOKEN)
fx.subscribe("123456789", username="ana")
print(fx.subscription_status("123456789"))

# One notification evaluation: alert on >= 1% moves, digest at 8:00 Caracas time
print(fx.evaluate_notifications())

# Keep one year of history
print(fx.purge_history())

fx.close()
