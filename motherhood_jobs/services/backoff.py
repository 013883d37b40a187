DEFAULT_BASE_MS = 1000
DEFAULT_CAP_MS = 30000


def backoff_ms(retry_count: int, base_ms: int = DEFAULT_BASE_MS, cap_ms: int = DEFAULT_CAP_MS) -> int:
    """
    Exponential backoff: base * 2 ** retry_count milliseconds, capped.
    retry_count = number of failed attempts so far.
    """
    if retry_count <= 0:
        return min(base_ms, cap_ms)
    # Past this exponent the product is always above any sane cap.
    if retry_count >= 63:
        return cap_ms
    return min(base_ms * (2 ** retry_count), cap_ms)
