# fare_negotiation/core/__init__.py
"""
Доменная логика сервиса торга.
"""
