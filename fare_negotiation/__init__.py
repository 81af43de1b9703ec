# fare_negotiation/__init__.py
"""
Сервис торга за стоимость поездки между пассажиром и водителем.
"""

__version__ = "1.0.0"
