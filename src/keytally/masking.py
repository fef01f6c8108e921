_VISIBLE_CHARS = 4


def mask_secret(secret: "str") -> "str":
    """
    masks a secret for display as first 4 + '...' + last 4 characters.
    Secrets too short to keep both ends hidden only show their prefix.
    """
    if not secret:
        return ""

    if len(secret) <= _VISIBLE_CHARS * 2:
        return f"{secret[: len(secret) // 2]}..."

    return f"{secret[:_VISIBLE_CHARS]}...{secret[-_VISIBLE_CHARS:]}"
