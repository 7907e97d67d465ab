# ride_dispatch/services/dispatch_gateway/__init__.py
"""
Dispatch Gateway: WebSocket сессии водителей и пассажиров, REST запросы состояния.
"""
