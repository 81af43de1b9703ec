# fare_negotiation/shared/__init__.py
"""
Общие модели и события, которые видят все компоненты сервиса.
"""
