from app.api.v1.presence.endpoints import router

__all__ = ["router"]
