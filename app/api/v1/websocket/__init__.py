from app.api.v1.websocket.endpoints import router

__all__ = ["router"]
