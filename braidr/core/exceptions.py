from typing import Optional

NETWORK_ERROR_MESSAGE = "Network error. Please check your connection."

class BraidrError(Exception):
    """Base error for the session and data-access layer."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message

class AuthValidationError(BraidrError):
    """Input rejected before any network call was made."""

class RoleMismatchError(AuthValidationError):
    def __init__(self, expected_role: str, actual_role: str):
        super().__init__(
            f"This account is registered as a {actual_role}. "
            f"Please sign in with the {actual_role} option instead of {expected_role}."
        )
        self.expected_role = expected_role
        self.actual_role = actual_role

class ProviderError(BraidrError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

class NetworkError(BraidrError):
    def __init__(self, message: str = NETWORK_ERROR_MESSAGE):
        super().__init__(message)

class ProfileNotFoundError(BraidrError):
    def __init__(self, user_id: str):
        super().__init__("User profile not found")
        self.user_id = user_id

class SignUpIncompleteError(BraidrError):
    """The identity account exists but its profile row could not be created."""

class StorageError(BraidrError):
    pass
