import time
from typing import Optional

import phonenumbers


def format_phone_number(phone_number: str) -> str:
    """
    Format an E.164 phone number for display.

    Args:
        phone_number: Canonical (E.164) or raw phone number string

    Returns:
        str: Number in international format, or the stripped input if it can't be parsed
    """
    text = (phone_number or "").strip()
    try:
        parsed = phonenumbers.parse(text, None)
    except phonenumbers.NumberParseException:
        return text
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.INTERNATIONAL)


def mask_api_key(api_key: Optional[str], visible: int = 4) -> str:
    """
    Mask an API key for logs and persisted snapshots.

    Args:
        api_key: Secret to mask
        visible: Number of trailing characters left readable

    Returns:
        str: Masked key, empty string when no key is set
    """
    if not api_key:
        return ""
    if len(api_key) <= visible:
        return "*" * len(api_key)
    return "*" * (len(api_key) - visible) + api_key[-visible:]


def confirm_action(message: str, default: bool = False) -> bool:
    """
    Ask user for confirmation.

    Args:
        message: Confirmation message
        default: Default choice if user just presses Enter

    Returns:
        bool: True if user confirms, False otherwise
    """
    suffix = "[Y/n]" if default else "[y/N]"
    try:
        response = input(f"{message} {suffix}: ").strip().lower()

        if not response:  # Empty response, use default
            return default

        return response in ('y', 'yes')
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return False
    except EOFError:
        return default


def format_duration(seconds: int) -> str:
    """'42s', '2m 5s' or '2h 1m'; negative values clamp to zero."""
    seconds = max(0, int(seconds))
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


def format_timestamp(ts: Optional[float]) -> str:
    """Local time for an epoch timestamp, 'N/A' when unset."""
    if not ts:
        return "N/A"
    return time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(ts))


def calculate_estimated_time(total_items: int, retry_delay: float, concurrent_requests: int = 1) -> str:
    """
    Rough completion estimate for a batch.

    Args:
        total_items: Numbers left to check
        retry_delay: Configured delay between retries (used as a per-lookup overhead guess)
        concurrent_requests: Parallel lookups

    Returns:
        str: Estimated time string
    """
    # Typical round trip of the lookup API
    base_processing_time = 1.5

    per_item = base_processing_time + max(0.0, retry_delay) * 0.1
    estimated_seconds = total_items * per_item / max(1, concurrent_requests)
    return format_duration(int(estimated_seconds))


def truncate_string(text: str, max_length: int = 50) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length - 3] + "..."
