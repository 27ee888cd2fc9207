"""
Configuration subsystem for raidforge.

- **config.py**: static configuration from environment variables (`Config`)
- **manager.py**: YAML-backed game tunables with runtime overrides
  (`ConfigManager`), imported from its module to keep this package free of
  the logging dependency

Usage
-----
```python
from raidforge.core.config import Config
from raidforge.core.config.manager import ConfigManager

db_url = Config.DATABASE_URL
ttl = ConfigManager.get("lifecycle.instance_ttl_seconds", 1800)
```
"""

from raidforge.core.config.config import Config, Environment

__all__ = ["Config", "Environment"]
