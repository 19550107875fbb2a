from compressor.storage.local_storage import LocalStorage, UploadSpool

__all__ = ["LocalStorage", "UploadSpool"]
