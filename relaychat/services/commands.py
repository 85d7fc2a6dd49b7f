"""Slash-command parsing for the composer."""

import re
from typing import Optional

IMAGE_COMMAND_PREFIXES = ("/imagine", "/img")

# Longest prefix first so "/imagine cat" is never read as "/img" + "agine cat".
_IMAGE_COMMAND = re.compile(
    r"^(?:%s)(?:\s+|$)(.*)$" % "|".join(re.escape(p) for p in sorted(IMAGE_COMMAND_PREFIXES, key=len, reverse=True)),
    re.IGNORECASE | re.DOTALL,
)


def parse_image_command(text: str) -> Optional[str]:
    """
    Return the prompt when text is an image-generation command, else None.

    "/imagine a red fox" -> "a red fox"; "/IMG  " -> ""; "/imagined" -> None.
    """
    match = _IMAGE_COMMAND.match(text.strip())
    if not match:
        return None
    return match.group(1).strip()
