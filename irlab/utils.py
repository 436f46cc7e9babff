"""Utility functions for IR Lab"""

import hashlib
import math
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Union

# CJK Unified Ideographs (basic block), the range the tokenizer indexes
CJK_CHAR_PATTERN = re.compile(r'[\u4e00-\u9fa5]')


def calculate_file_hash(file_path_or_content: Union[str, Path, bytes]) -> str:
    """
    Calculate SHA256 hash of a file
    
    Args:
        file_path_or_content: File path (str/Path) or file content (bytes)
    
    Returns:
        Hexadecimal hash string (64 characters)
    
    Examples:
        >>> calculate_file_hash(b"binary content")
        'e5f6g7h8...'
    """
    if isinstance(file_path_or_content, bytes):
        content = file_path_or_content
    else:
        path = Path(file_path_or_content)
        with open(path, "rb") as f:
            content = f.read()
    
    return hashlib.sha256(content).hexdigest()


def estimate_tokens(text: str) -> int:
    """
    Estimate token count of a string.
    
    Heuristic, not a tokenizer: CJK ideographs cost 1/1.5 token each,
    every other character 1/4 token.
    
        tokens = ceil(cjk_chars / 1.5 + other_chars / 4)
    
    Chunk-size decisions and context budgets both use this formula, so it
    must stay identical everywhere.
    
    Examples:
        >>> estimate_tokens("标准流程。")
        3
        >>> estimate_tokens("abcd")
        1
        >>> estimate_tokens("")
        0
    """
    if not text:
        return 0
    cjk_chars = len(CJK_CHAR_PATTERN.findall(text))
    other_chars = len(text) - cjk_chars
    return math.ceil(cjk_chars / 1.5 + other_chars / 4)


def utc_now() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)
