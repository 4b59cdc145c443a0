"""
Path normalization for ffmpeg.

Paths embedded in a filter graph need forward slashes and escaped ``:`` and
``'``; paths in a concat manifest need concat-style quoting. Both helpers
are pure, so the same input always renders the same way on any host.
"""

_PRESERVED_ESCAPES = (":", "'")


def normalize(path: str) -> str:
    """
    Make a path safe to embed in a filter graph argument.

    - a backslash that is not already one of our escapes (``\\:`` or ``\\'``)
      becomes ``/``
    - every unescaped ``:`` (including a drive colon) becomes ``\\:``
    - every unescaped ``'`` becomes ``\\'``

    ``normalize(normalize(p)) == normalize(p)`` for every ``p``. A raw
    Windows path segment that starts with ``'`` is read as an existing escape.
    """
    out = []
    i = 0
    length = len(path)
    while i < length:
        ch = path[i]
        if ch == "\\":
            nxt = path[i + 1] if i + 1 < length else ""
            if nxt in _PRESERVED_ESCAPES:
                out.append("\\" + nxt)
                i += 2
                continue
            out.append("/")
        elif ch in _PRESERVED_ESCAPES:
            out.append("\\" + ch)
        else:
            out.append(ch)
        i += 1
    return "".join(out)


def to_forward_slashes(path: str) -> str:
    """Plain command-line arguments only need separator cleanup."""
    return path.replace("\\", "/")


def concat_entry(path: str) -> str:
    """``file '...'`` line for an ffconcat manifest."""
    quoted = to_forward_slashes(path).replace("'", "'\\''")
    return f"file '{quoted}'"
