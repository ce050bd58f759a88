"""
Quality resolution.

Maps a requested quality token to an ordered chain of yt-dlp format
selectors, and validates conversion requests before a task is created.
"""

from urllib.parse import urlparse

# Most specific first: exact YouTube video ids (AV1, then H.264) merged with
# the m4a audio track 140, then any stream within the height bound plus 140,
# then the best single file within the bound.
QUALITY_SELECTORS = {
    '720p': [
        '398+140',
        '136+140',
        'best[height<=720]+140',
        'best[height<=720]',
    ],
    '1080p': [
        '399+140',
        '137+140',
        'best[height<=1080]+140',
        'best[height<=1080]',
    ],
    '4K': [
        '401+140',
        '313+140',
        'best[height<=2160]+140',
        'best[height<=2160]',
    ],
}

QUALITY_CHOICES = list(QUALITY_SELECTORS)

DEFAULT_SELECTORS = ['best']


class InvalidRequest(ValueError):
    """Raised when a conversion request is rejected before task creation"""


def resolve(token):
    """
    Resolve a quality token to its format selector fallback chain.

    Unrecognized tokens resolve to the default chain rather than failing.

    Args:
        token: Quality token such as '720p', '1080p' or '4K'

    Returns:
        list: Non-empty list of yt-dlp format selectors, most specific first
    """
    chain = QUALITY_SELECTORS.get(token) if isinstance(token, str) else None
    return list(chain or DEFAULT_SELECTORS)


def format_selector(token):
    """Selector chain joined with '/', yt-dlp's fallback syntax"""
    return '/'.join(resolve(token))


def validate_request(url, quality):
    """
    Validate a conversion request.

    Args:
        url: Remote media URL
        quality: Requested quality token

    Raises:
        InvalidRequest: If the URL is missing or not http(s), or the quality
            token is not one of QUALITY_CHOICES
    """
    if not url or not url.strip():
        raise InvalidRequest('URL is required')

    parsed = urlparse(url.strip())
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise InvalidRequest(f'Not an http(s) URL: {url}')

    if quality not in QUALITY_SELECTORS:
        raise InvalidRequest(f'Quality must be one of: {", ".join(QUALITY_CHOICES)}')
