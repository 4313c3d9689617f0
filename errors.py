class LibraryError(Exception):
    """Base class for every error the lending core reports to its caller."""

    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"message": self.message}


class InvalidArgument(LibraryError):
    status_code = 400


class InvalidState(LibraryError):
    status_code = 400


class Unauthorized(LibraryError):
    status_code = 401


class Forbidden(LibraryError):
    status_code = 403


class NotFound(LibraryError):
    status_code = 404


class Conflict(LibraryError):
    status_code = 409
