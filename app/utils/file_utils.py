# =============================================================================
# File: app/utils/file_utils.py
# Description: Attachment helpers shared by the uploader and reply previews
# =============================================================================

_SIZE_UNITS = ("Bytes", "KB", "MB", "GB")


def format_file_size(size_bytes: int) -> str:
    """
    Human readable file size, at most two decimals, 1024-based.

    >>> format_file_size(0)
    '0 Bytes'
    >>> format_file_size(1536)
    '1.5 KB'
    """
    if size_bytes <= 0:
        return "0 Bytes"
    value = float(size_bytes)
    unit = 0
    while value >= 1024 and unit < len(_SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{round(value, 2):g} {_SIZE_UNITS[unit]}"
