"""API key validation for the back-office endpoints.

Staff tools call the admin endpoints with a shared key configured through
``ADMIN_API_KEY`` (comma separated to allow rotation).
"""


class APIKeyValidator:
    """Validates API keys presented in the X-API-Key header."""

    def __init__(self, api_keys: list[str]) -> None:
        """Initialize validator with the accepted keys.

        Args:
            api_keys: Accepted API key strings; blank entries are ignored

        Raises:
            ValueError: If no usable key is provided
        """
        keys = {key.strip() for key in api_keys if key and key.strip()}
        if not keys:
            raise ValueError("At least one API key must be provided")

        self.api_keys = keys

    @classmethod
    def from_setting(cls, setting: str) -> "APIKeyValidator":
        """Build a validator from a comma separated setting value."""
        return cls(api_keys=setting.split(","))

    def validate(self, api_key: str) -> bool:
        return api_key.strip() in self.api_keys
