from .client import GoogleDriveStorage

__all__ = ["GoogleDriveStorage"]
