"""Error taxonomy for the file transfer server.

Per-item failures inside bulk operations are never raised; they are
collected into the result payload instead.
"""


class FileTransferError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(FileTransferError):
    status_code = 404


class InvalidInput(FileTransferError):
    status_code = 400


class IOFailure(FileTransferError):
    status_code = 500
