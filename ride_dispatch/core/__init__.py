# ride_dispatch/core/__init__.py
"""
Доменная логика: геооценки, тарифы, присутствие, поездки, диспетчеризация.
"""
