# ride_dispatch/__init__.py
"""
Сервис диспетчеризации поездок в реальном времени.
Реестр присутствия, подбор ближайших водителей, жизненный цикл поездки.
"""

__version__ = "1.0.0"
