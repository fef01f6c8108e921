class NoCredentialsError(Exception):
    """
    raised when a snapshot is requested but the store holds
    no credentials at all.
    """

    def __init__(self) -> "None":
        super().__init__("No API keys found in storage. Please import keys first.")


class CredentialNotFoundError(KeyError):
    def __init__(self, credential_id: "str") -> "None":
        super().__init__(credential_id)
        self.credential_id = credential_id

    def __str__(self) -> "str":
        return f"credential not found: {self.credential_id}"


class UpstreamStatusError(Exception):
    """
    raised by a provider when the upstream answered with a
    non-success status code.
    """

    def __init__(self, status_code: "int", body: "str" = "") -> "None":
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP {status_code}")
