# snapvault_Server_API/app/core/Sync/exceptions.py

class SyncError(Exception):
    """Base exception for the sync library."""
    pass

class TransportError(SyncError):
    """Represents an error talking to the sync server or the object store."""
    def __init__(self, message, status_code=None, operation=None, *args):
        super().__init__(message, *args)
        self.status_code = status_code
        self.operation = operation

    def __str__(self):
        base = super().__str__()
        details = []
        if self.operation: details.append(f"Operation: {self.operation}")
        if self.status_code: details.append(f"Status: {self.status_code}")
        return f"{base} ({', '.join(details)})" if details else base

class RemoteNotFoundError(TransportError):
    """The server has no live entry for the requested photo id."""
    pass

class DeviceIdentityError(SyncError):
    """The device id could not be read or durably created."""
    pass
