"""
Alert Manager - alert evaluation and notification pipeline.

Once per external trigger tick, one cycle:
- Loads active, monitored projects and their alert rules
- Evaluates every rule against the telemetry store
- Collapses simultaneous triggers to one alert per category
- Suppresses alerts still inside their cooldown window
- Publishes the survivors to the alert channel for dashboards and notifiers
"""

__version__ = "1.0.0"
