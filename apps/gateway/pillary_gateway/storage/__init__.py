from .r2 import R2Storage, StoredObject, close_storage, get_storage

__all__ = ["R2Storage", "StoredObject", "close_storage", "get_storage"]
