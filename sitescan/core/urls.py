"""
URL canonicalization and crawl filtering.

normalize() only canonicalizes; rejection_reason() decides whether a
canonical URL is worth crawling. Both are pure so the crawler, the markup
analyzer and the scoring engine agree on what "the same URL" means.
"""

from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

from sitescan.core.exceptions import InvalidStartURLError


class URLNormalizer:
    """Normalizes URLs for deduplication and filters non-content targets."""

    ALLOWED_QUERY_PARAMS = {"id", "p", "page", "slug", "post", "product", "lang"}
    REJECTED_QUERY_PARAMS = {"replytocom", "print", "share", "preview", "add-to-cart", "action"}

    IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".ico", ".bmp", ".avif"}
    NON_CONTENT_EXTENSIONS = {
        ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
        ".css", ".js", ".json", ".xml", ".txt",
        ".woff", ".woff2", ".ttf", ".eot",
        ".zip", ".rar", ".tar", ".gz", ".7z", ".exe", ".dmg",
        ".mp3", ".mp4", ".avi", ".mov", ".wmv", ".wav", ".webm",
    }

    # Matched against whole path segments, so "/administration" stays crawlable.
    EXCLUDED_SEGMENTS = {
        "wp-admin", "admin", "administrator", "login", "logout", "register", "signin", "signup",
        "cart", "checkout", "account", "my-account", "dashboard",
        ".well-known", "api", "wp-json", "wp-content", "wp-includes", "cgi-bin", "xmlrpc.php",
        "feed", "rss", "atom", "print", "email", "share", "trackback",
    }
    ARCHIVE_INDEX_SEGMENTS = {"tag", "tags", "category", "categories", "author"}

    SKIPPED_SCHEMES = ("mailto:", "tel:", "javascript:", "data:", "sms:", "ftp:")

    @classmethod
    def normalize(cls, url: str, base_url: str) -> str | None:
        """
        Resolve url against base_url and canonicalize it.
        Returns None for anything that is not an http(s) URL.
        """
        raw = (url or "").strip()
        if not raw or raw.startswith("#") or raw.lower().startswith(cls.SKIPPED_SCHEMES):
            return None
        try:
            parsed = urlparse(urljoin(base_url, raw))
        except ValueError:
            return None

        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            return None

        query = ""
        if parsed.query:
            kept = [
                (key, value)
                for key, value in parse_qsl(parsed.query, keep_blank_values=True)
                if key.lower() in cls.ALLOWED_QUERY_PARAMS
            ]
            query = urlencode(kept)

        path = parsed.path or "/"
        if path != "/" and path.endswith("/"):
            path = path.rstrip("/") or "/"

        return urlunparse((
            parsed.scheme.lower(),
            parsed.netloc.lower(),
            path,
            "",
            query,
            "",
        ))

    @classmethod
    def normalize_start_url(cls, url: str) -> str:
        """Canonicalize a user-supplied start URL, defaulting to https."""
        if not isinstance(url, str) or not url.strip():
            raise InvalidStartURLError(url, "empty URL")
        raw = url.strip()
        if "://" not in raw:
            raw = f"https://{raw}"

        parsed = urlparse(raw)
        if parsed.scheme not in ("http", "https"):
            raise InvalidStartURLError(url, f"unsupported scheme '{parsed.scheme}'")
        try:
            host = parsed.hostname
        except ValueError as exc:
            raise InvalidStartURLError(url, str(exc)) from exc
        if not host or " " in host or ("." not in host and host != "localhost"):
            raise InvalidStartURLError(url, "missing or invalid host")

        normalized = cls.normalize(raw, raw)
        if normalized is None:
            raise InvalidStartURLError(url, "could not be normalized")
        return normalized

    @classmethod
    def rejection_reason(
        cls,
        url: str,
        root_host: str,
        *,
        include_images: bool = False,
        follow_external: bool = False,
        raw_url: str | None = None,
    ) -> str | None:
        """
        Why a normalized URL must not be crawled, or None when it is fine.

        raw_url is the href before normalization; reply/print/share query
        parameters are stripped by normalize() so they are checked there.
        """
        parsed = urlparse(url)

        if not follow_external and not cls.is_same_host(url, root_host):
            return "external"

        path_lower = parsed.path.lower()
        last_segment = path_lower.rsplit("/", 1)[-1]
        if "." in last_segment:
            extension = last_segment[last_segment.rfind("."):]
            if extension in cls.IMAGE_EXTENSIONS and not include_images:
                return "image"
            if extension in cls.NON_CONTENT_EXTENSIONS:
                return "non_content_extension"

        segments = [s for s in path_lower.split("/") if s]
        if any(segment in cls.EXCLUDED_SEGMENTS for segment in segments):
            return "excluded_path"
        if segments and segments[-1] in cls.ARCHIVE_INDEX_SEGMENTS:
            return "archive_index"

        source = raw_url if raw_url is not None else url
        source_query = urlparse(source).query if "?" in source else ""
        if source_query:
            keys = {key.lower() for key, _ in parse_qsl(source_query, keep_blank_values=True)}
            if keys & cls.REJECTED_QUERY_PARAMS:
                return "rejected_query"

        return None

    @classmethod
    def is_crawlable(cls, url: str, root_host: str, **kwargs) -> bool:
        return cls.rejection_reason(url, root_host, **kwargs) is None

    @classmethod
    def filter_link(
        cls,
        href: str,
        page_url: str,
        root_host: str,
        *,
        include_images: bool = False,
        follow_external: bool = False,
    ) -> str | None:
        """Normalize a raw href and return it only when it should be crawled."""
        normalized = cls.normalize(href, page_url)
        if normalized is None:
            return None
        absolute = urljoin(page_url, href.strip())
        if cls.rejection_reason(
            normalized,
            root_host,
            include_images=include_images,
            follow_external=follow_external,
            raw_url=absolute,
        ):
            return None
        return normalized

    @staticmethod
    def host_of(url: str) -> str:
        host = (urlparse(url).hostname or "").lower()
        return host[4:] if host.startswith("www.") else host

    @classmethod
    def is_same_host(cls, url: str, root_host: str) -> bool:
        """Same site check that treats example.com and www.example.com alike."""
        root = root_host.lower()
        if root.startswith("www."):
            root = root[4:]
        return cls.host_of(url) == root

    @staticmethod
    def origin_of(url: str) -> str:
        parsed = urlparse(url)
        return f"{parsed.scheme}://{parsed.netloc}"
