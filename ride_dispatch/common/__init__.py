# ride_dispatch/common/__init__.py
"""
Общие утилиты: константы, исключения, логирование.
"""
