from .submissions import router as submission_router

__all__ = ["submission_router"]
