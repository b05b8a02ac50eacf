"""
Configuration module for the concierge relay.

Key components:
- constants: protocol tags, default realtime session values, room prefixes.
- settings: environment-driven settings with startup validation.
- logging_config: console and rotating-file logging, optionally as structlog JSON lines.

Usage examples:
```python
from concierge_relay.config.logging_config import configure_logging
from concierge_relay.config.settings import get_settings, validate_settings

logger = configure_logging()
settings = validate_settings(get_settings())
```
"""
