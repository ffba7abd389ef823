"""Text-level de-duplication between consecutive chunks.

Chunks are recorded with a few seconds of deliberate audio overlap, so the
start of a new transcript usually repeats the end of the previous one.
"""

DEFAULT_MIN_MATCH = 10
DEFAULT_WINDOW = 300


def strip_overlap(
    reference: str | None,
    candidate: str | None,
    *,
    min_match: int = DEFAULT_MIN_MATCH,
    window: int = DEFAULT_WINDOW,
) -> str | None:
    """Return the part of ``candidate`` that does not repeat ``reference``'s tail.

    Only the last ``window`` characters of ``reference`` are compared. Every
    length ``k`` from ``min_match`` up to the longest comparable length is
    tested and the largest ``k`` whose reference suffix equals the candidate
    prefix is removed. Matches shorter than ``min_match`` are never stripped.

    Empty or missing input is a no-op: ``candidate`` is returned as given.
    """
    if not reference or not candidate:
        return candidate

    tail = reference[-window:] if window > 0 else reference
    longest = min(len(tail), len(candidate))
    best = 0
    for k in range(max(min_match, 1), longest + 1):
        if tail[-k:] == candidate[:k]:
            best = k
    return candidate[best:] if best else candidate
