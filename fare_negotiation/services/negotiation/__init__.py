# fare_negotiation/services/negotiation/__init__.py
"""
Negotiation Service: HTTP API, push-хаб и ретрансляция кадров между экземплярами.
"""
