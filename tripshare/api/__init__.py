# API endpoints and routers

from .trips_endpoints import router as trips_router

__all__ = ["trips_router"]
