# ride_dispatch/services/__init__.py
"""
Сетевые сервисы диспетчерской.
"""
