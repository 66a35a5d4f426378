"""Application configuration module.

- **settings.py**: Environment-based settings (Pydantic BaseSettings)
  - Backing service URL, token and transport timeout
  - Cache storage backend (memory or redis)
  - Replica fan-out concurrency and auto-fill policy
  - Template defaults used as "never customized" sentinels
"""
from coachcycle.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
