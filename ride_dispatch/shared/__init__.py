# ride_dispatch/shared/__init__.py
"""
Схемы сообщений, общие для транспорта и тестов.
"""
