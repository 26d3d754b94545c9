# birchvault/vault_api/exceptions.py
#
#
#######################################################################################################################
#
# Functions:

class VaultAPIError(Exception):
    """Base exception for vault_api errors."""
    pass

class APIConnectionError(VaultAPIError):
    """Raised for network or connection issues, including timeouts."""
    pass

class APIRequestError(VaultAPIError):
    """Raised for errors in constructing or sending the request (e.g., bad data)."""
    def __init__(self, message: str, response_data: dict = None):
        super().__init__(message)
        self.response_data = response_data or {}

class APIResponseError(VaultAPIError):
    """Raised for non-2xx responses or issues parsing the response."""
    def __init__(self, status_code: int, message: str, response_data: dict = None):
        super().__init__(f"API Error {status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.response_data = response_data or {}

class AuthenticationError(VaultAPIError):
    """Raised for authentication failures. The server's message is kept as the exception text."""
    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code

#
# End of birchvault/vault_api/exceptions.py
########################################################################################################################
