"""Application exceptions"""


class ConfigurationError(RuntimeError):
    """Raised at startup when required configuration is missing or invalid"""


class SignatureVerificationError(Exception):
    """Raised by the transport layer when a webhook signature does not verify

    Carries a short machine-readable reason ("missing", "mismatch") for logs
    and metrics. The verifier itself never raises; only the request dependency
    converts a failed check into this exception.
    """

    def __init__(self, message: str, reason: str = "mismatch"):
        super().__init__(message)
        self.reason = reason
