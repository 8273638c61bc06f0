"""
SVG badge rendering.

Badges are rendered locally from two fixed templates. Rendering is a pure
template substitution, so identical inputs always give identical markup and
the output can be cached by its inputs.
"""
import logging
from string import Template

import httpx

from config import PROBE_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

LABEL = "cover.run"
LABEL_WIDTH = 61

COLORS = {
    'red': '#d6604a',
    'green': '#96c40f',
    'yellow': '#d6ae22',
    'yellowgreen': '#a4a61d',
}
DEFAULT_COLOR = '#9a9a9a'

# Older badge URLs use "curve" and "flat-curve"
CURVED_STYLES = ("curved", "curve", "flat-curve")

CURVED_BADGE = Template(
    '<svg xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink" '
    'width="$width" height="20">'
    '<linearGradient id="b" x2="0" y2="100%">'
    '<stop offset="0" stop-color="#bbb" stop-opacity=".1"/>'
    '<stop offset="1" stop-opacity=".1"/></linearGradient>'
    '<clipPath id="a"><rect width="$width" height="20" rx="3" fill="#fff"/></clipPath>'
    '<g clip-path="url(#a)">'
    '<path fill="#555" d="M0 0h${label_width}v20H0z"/>'
    '<path fill="$color" d="M${label_width} 0h${status_width}v20H${label_width}z"/>'
    '<path fill="url(#b)" d="M0 0h${width}v20H0z"/></g>'
    '<g fill="#fff" text-anchor="middle" font-family="DejaVu Sans,Verdana,Geneva,sans-serif" font-size="110">'
    '<text x="315" y="150" fill="#010101" fill-opacity=".3" transform="scale(.1)" textLength="510">$label</text>'
    '<text x="315" y="140" transform="scale(.1)" textLength="510">$label</text>'
    '<text x="$status_x" y="150" fill="#010101" fill-opacity=".3" transform="scale(.1)">$status</text>'
    '<text x="$status_x" y="140" transform="scale(.1)">$status</text>'
    '</g></svg>'
)

FLAT_BADGE = Template(
    '<svg xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink" '
    'width="$width" height="20">'
    '<g shape-rendering="crispEdges">'
    '<path fill="#555" d="M0 0h${label_width}v20H0z"/>'
    '<path fill="$color" d="M${label_width} 0h${status_width}v20H${label_width}z"/></g>'
    '<g fill="#fff" text-anchor="middle" font-family="DejaVu Sans,Verdana,Geneva,sans-serif" font-size="110">'
    '<text x="315" y="140" transform="scale(.1)" textLength="510">$label</text>'
    '<text x="$status_x" y="140" transform="scale(.1)">$status</text>'
    '</g></svg>'
)

# Status text length -> (text anchor x, total badge width)
_LAYOUT = {
    1: (725, 78),
    2: (745, 90),
    3: (775, 96),
    4: (815, 104),
    5: (835, 108),
    6: (865, 114),
    7: (895, 120),
    8: (895, 120),
    9: (895, 120),
}


def badge_color(name):
    """Map a color name to its hex value; unknown names map to grey."""
    return COLORS.get((name or '').lower(), DEFAULT_COLOR)


def layout(status):
    """
    Compute the status text anchor and the total badge width.

    Anchors are in the 10x text coordinate space used by the templates.

    Args:
        status (str): Status text

    Returns:
        tuple: (int, int) - (anchor x, total width)
    """
    length = len(status)
    if length in _LAYOUT:
        return _LAYOUT[length]
    status_width = length * 8
    return 685 + (status_width + 160), LABEL_WIDTH + status_width + 32


def render(color, style, status):
    """
    Render a badge.

    Args:
        color (str): Color name (red, green, yellow, yellowgreen, lightgrey...)
        style (str): "curved" (or the older "curve" and "flat-curve") for
            rounded corners with a gradient, anything else renders the flat
            variant
        status (str): Status text shown on the right of the badge

    Returns:
        str: SVG markup
    """
    status_x, width = layout(status)
    template = CURVED_BADGE if style in CURVED_STYLES else FLAT_BADGE
    return template.substitute(
        width=width,
        label_width=LABEL_WIDTH,
        status_width=width - LABEL_WIDTH,
        color=badge_color(color),
        label=LABEL,
        status_x=status_x,
        status=_escape(status),
    )


def _escape(text):
    return (text.replace('&', '&amp;')
                .replace('<', '&lt;')
                .replace('>', '&gt;')
                .replace('"', '&quot;'))


def fetch_shields_badge(color, style, status, http_client=None):
    """
    Fetch a badge from img.shields.io instead of rendering it locally.

    Args:
        color (str): Color name
        style (str): shields.io style name
        status (str): Status text
        http_client (httpx.Client): Client to use, a short-lived one if None

    Returns:
        str: SVG markup, at most 1 KiB

    Raises:
        httpx.HTTPError: If the request fails
    """
    url = f"https://img.shields.io/badge/{LABEL}-{_shields_escape(status)}-{color}.svg"
    params = {'style': style}
    if http_client is None:
        with httpx.Client(timeout=PROBE_TIMEOUT_SECONDS, follow_redirects=True) as c:
            response = c.get(url, params=params)
    else:
        response = http_client.get(url, params=params)
    response.raise_for_status()
    return response.content[:1024].decode('utf-8', errors='replace')


def _shields_escape(text):
    # shields.io path segments use "-" as separator and "%" must be encoded
    return text.replace('-', '--').replace('_', '__').replace('%', '%25').replace(' ', '_')
