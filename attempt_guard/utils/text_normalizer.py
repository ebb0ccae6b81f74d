def normalize_identity(email: str) -> str:
    """Normalize an email so every spelling maps to one counter.

    Trims surrounding whitespace and lower-cases the whole address.

    Args:
        email: Raw email as submitted by the client.

    Returns:
        str: Normalized identity (empty when the input is blank).
    """
    return email.strip().lower()


def normalize_address(address: str) -> str:
    """Trim a client address extracted from headers or the socket.

    Args:
        address: Raw client address.

    Returns:
        str: Address without surrounding whitespace.
    """
    return address.strip()
