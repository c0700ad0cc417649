"""
Message chunking for the output channel's character limit.

Messages are split on spaces only. A single word longer than the available
room is emitted alone as an oversized chunk rather than being truncated, so
no recognized text is ever lost.
"""


def _pack_words(words: list[str], first_capacity: int, capacity: int) -> list[str]:
    """Greedily pack words into space-joined bodies of at most ``capacity`` characters."""
    bodies: list[str] = []
    current: list[str] = []
    current_len = 0
    room = first_capacity

    for word in words:
        if not current:
            current = [word]
            current_len = len(word)
            continue

        if current_len + 1 + len(word) <= room:
            current.append(word)
            current_len += 1 + len(word)
        else:
            bodies.append(" ".join(current))
            room = capacity
            current = [word]
            current_len = len(word)

    if current:
        bodies.append(" ".join(current))
    return bodies


def split_message(message: str, limit: int) -> list[str]:
    """
    Split a message into word-boundary chunks of at most ``limit`` characters.

    Joining the result with single spaces gives back ``message``.
    """
    if limit <= 0:
        raise ValueError("limit must be positive")
    if not message:
        return []
    return _pack_words(message.split(" "), limit, limit)


def chunk_message(display_name: str, text: str, limit: int, reprefix: bool = True) -> list[str]:
    """
    Render ``"<display_name>: <text>"`` and split it to fit ``limit``.

    With ``reprefix`` every continuation chunk repeats the speaker prefix and the
    prefix counts against the limit of each chunk. Without it only the first
    chunk is labelled.

    Raises:
        ValueError: If the prefix leaves no room for any text
    """
    if not text.strip():
        return []

    prefix = f"{display_name}: "
    if not reprefix:
        return split_message(prefix + text, limit)

    capacity = limit - len(prefix)
    if capacity <= 0:
        raise ValueError(f"Speaker prefix {prefix!r} does not fit in a {limit}-character message")

    return [prefix + body for body in _pack_words(text.split(" "), capacity, capacity)]
