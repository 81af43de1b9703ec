# fare_negotiation/services/__init__.py
"""
HTTP и push фасады сервиса.
"""
