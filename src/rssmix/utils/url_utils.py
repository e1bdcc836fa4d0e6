"""URL normalization for source identity."""

from urllib.parse import urlparse


def split_url(url: str) -> tuple[str, str]:
    """Split a feed url into its stored (scheme, urn) pair.

    A missing scheme defaults to http. Scheme and host are lower-cased,
    the path is kept as given, query and fragment are dropped.

    Args:
        url: Url as entered by a user

    Returns:
        Tuple of (scheme, host + path)

    Raises:
        ValueError: If the url has no host or an unsupported scheme
    """
    url = url.strip()
    if url[:4].lower() != "http":
        url = "http://" + url

    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    if scheme not in ("http", "https"):
        raise ValueError(f"Unsupported scheme: {parsed.scheme}")
    if not parsed.netloc:
        raise ValueError(f"Invalid URL format: {url}")

    return scheme, parsed.netloc.lower() + parsed.path


def normalize_url(url: str) -> str:
    """Return the canonical form of a feed url.

    Example:
        >>> normalize_url("Example.COM/Feed.xml?x=1")
        'http://example.com/Feed.xml'
    """
    scheme, urn = split_url(url)
    return f"{scheme}://{urn}"
