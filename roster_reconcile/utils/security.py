"""
Input sanitization helpers for uploaded files and download ids.
"""

import re
from pathlib import Path


def sanitize_filename(filename: str) -> str:
    """
    Sanitize filename to prevent directory traversal and other attacks.

    Unlike ``werkzeug.utils.secure_filename`` this keeps non-ASCII
    characters, so Chinese roster names survive the round trip.

    Args:
        filename: Original filename

    Returns:
        Sanitized filename
    """
    if not filename:
        return "unnamed_file"

    # Remove path components
    filename = Path(filename.replace("\\", "/")).name

    # Remove dangerous characters
    filename = re.sub(r'[<>:"/\\|?*\x00-\x1f]', '_', filename)

    # Limit length
    if len(filename) > 255:
        name, ext = filename.rsplit('.', 1) if '.' in filename else (filename, '')
        filename = name[:255-len(ext)-1] + '.' + ext if ext else name[:255]

    if not filename or filename.strip() == '' or filename in ('.', '..'):
        filename = "unnamed_file"

    return filename


def validate_file_extension(filename: str, allowed_extensions) -> bool:
    """
    Validate file extension against allowed list.

    Args:
        filename: File name
        allowed_extensions: Iterable of allowed extensions (e.g., ['.zip'])

    Returns:
        True if extension is allowed
    """
    if not filename:
        return False

    ext = Path(filename).suffix.lower()
    return ext in {e.lower() for e in allowed_extensions}


def validate_file_path(path, base_dir) -> bool:
    """Check that ``path`` resolves inside ``base_dir``."""
    try:
        resolved_path = Path(path).resolve()
        base_path = Path(base_dir).resolve()
    except (OSError, RuntimeError):
        return False
    return resolved_path == base_path or base_path in resolved_path.parents


def is_safe_filename(filename: str) -> bool:
    """
    Check if filename is safe (no directory traversal, no dangerous characters).

    Args:
        filename: Filename to check

    Returns:
        True if safe
    """
    if not filename:
        return False

    if '..' in filename or '/' in filename or '\\' in filename:
        return False

    dangerous_chars = ['<', '>', ':', '"', '|', '?', '*']
    if any(char in filename for char in dangerous_chars):
        return False

    if len(filename) > 255:
        return False

    return True


def generate_security_headers() -> dict:
    """Security headers added to every response."""
    return {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "X-XSS-Protection": "1; mode=block",
        "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
        "Referrer-Policy": "strict-origin-when-cross-origin"
    }
