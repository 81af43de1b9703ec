# fare_negotiation/config/__init__.py
"""
Модуль конфигурации.
Экспортирует настройки приложения.
"""

from fare_negotiation.config.loader import Settings, get_settings, settings

__all__ = ["Settings", "get_settings", "settings"]
