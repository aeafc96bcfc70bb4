# errors.py
"""
Error taxonomy for the post-payment fulfillment workflow.

Every stage of the workflow fails with one of these classes. The HTTP layer
turns them into `{"error": message}` bodies with the class's status code.
"""
from typing import Optional


class FulfillmentError(Exception):
    """Base class for all workflow failures."""
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(FulfillmentError):
    """A required secret or setting is missing. Deployment fault, never retried."""
    status_code = 500


class AuthenticationError(FulfillmentError):
    """The webhook signature is missing, malformed or does not match."""
    status_code = 400


class ValidationError(FulfillmentError):
    """Event payload or metadata is malformed."""
    status_code = 400


class NotFoundError(FulfillmentError):
    """A referenced generated image is missing or has no usable URL."""
    status_code = 500


class VendorError(FulfillmentError):
    """Any failure talking to the print vendor, including timeouts."""
    status_code = 500

    def __init__(self, message: str, item_index: Optional[int] = None):
        super().__init__(message)
        self.item_index = item_index


class StorageError(FulfillmentError):
    """The datastore rejected or could not complete an operation."""
    status_code = 500
