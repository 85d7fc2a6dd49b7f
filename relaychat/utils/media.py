"""
MEDIA UTILITY
=============

Small pure helpers for image content: base64 data URLs, the inline SVG
placeholder shown when the upstream hands back a mock image, and the markdown
snippets the chat bubbles render.
"""

import base64
from html import escape

PLACEHOLDER_WIDTH = 512
PLACEHOLDER_HEIGHT = 512
PROMPT_PREVIEW_CHARS = 30


def to_data_url(data: bytes, content_type: str) -> str:
    """Encode raw bytes as a data: URL."""
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{content_type};base64,{encoded}"


def truncate_prompt(prompt: str, limit: int = PROMPT_PREVIEW_CHARS) -> str:
    """First `limit` characters of the prompt, with "..." appended when it was longer."""
    if len(prompt) > limit:
        return prompt[:limit] + "..."
    return prompt


def placeholder_svg(prompt: str) -> str:
    """The placeholder image as SVG markup, with the (truncated) prompt as its caption."""
    caption = escape(truncate_prompt(prompt))
    return (
        f'<svg width="{PLACEHOLDER_WIDTH}" height="{PLACEHOLDER_HEIGHT}" xmlns="http://www.w3.org/2000/svg">'
        '<rect width="100%" height="100%" fill="#f0f0f0"/>'
        '<rect width="90%" height="90%" x="5%" y="5%" fill="#e0e0e0" stroke="#ccc" stroke-width="2"/>'
        '<text x="50%" y="30%" font-family="Arial" font-size="24" text-anchor="middle" fill="#333">Image Generation</text>'
        '<text x="50%" y="40%" font-family="Arial" font-size="18" text-anchor="middle" fill="#555">Placeholder image</text>'
        f'<text x="50%" y="50%" font-family="Arial" font-size="16" text-anchor="middle" fill="#777">{caption}</text>'
        "</svg>"
    )


def placeholder_data_url(prompt: str) -> str:
    return to_data_url(placeholder_svg(prompt).encode("utf-8"), "image/svg+xml")


def image_markdown(alt: str, url: str) -> str:
    # Brackets in the alt text would end the link label early.
    safe_alt = alt.replace("[", "(").replace("]", ")").replace("\n", " ")
    return f"![{safe_alt}]({url})"
