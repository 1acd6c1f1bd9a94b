import urllib.parse as urlparse
from typing import Optional

import tldextract
from slugify import slugify

# Offline extractor: bundled public suffix snapshot, no network fetch
_extract = tldextract.TLDExtract(suffix_list_urls=())

NON_CONTENT_PATTERNS = [
	"/wp-admin/", "/admin/", "/login", "/signin", "/signup", "/logout",
	"/cart", "/checkout", "/account", "/dashboard",
	".pdf", ".jpg", ".jpeg", ".png", ".gif", ".css", ".js", ".xml", ".json",
]


def normalize_url(base: str, link: str) -> Optional[str]:
	if not link:
		return None
	try:
		joined = urlparse.urljoin(base, link)
		parsed = urlparse.urlparse(joined)
		if not parsed.scheme.startswith("http"):
			return None
		# Drop fragments
		return parsed._replace(fragment="").geturl()
	except ValueError:
		return None


def normalize_library_url(url: str) -> str:
	"""Canonical form used to de-duplicate saved URLs: lowercase host, no trailing slash."""
	try:
		parsed = urlparse.urlparse(url)
	except ValueError:
		return url
	if not parsed.scheme or not parsed.netloc:
		return url
	path = parsed.path or "/"
	if path != "/":
		path = path.rstrip("/") or "/"
	return parsed._replace(netloc=parsed.netloc.lower(), path=path).geturl()


def same_registrable_domain(a: str, b: str) -> bool:
	pa = urlparse.urlparse(a)
	pb = urlparse.urlparse(b)
	if not pa.hostname or not pb.hostname:
		return False
	return pa.hostname == pb.hostname or pa.hostname.endswith("." + pb.hostname)


def is_navigable_link(href: Optional[str]) -> bool:
	if not href:
		return False
	return not href.startswith(("mailto:", "tel:", "javascript:"))


def extract_base_domain(url: str) -> str:
	"""Origin of a URL, e.g. https://blog.example.com"""
	parsed = urlparse.urlparse(url)
	if not parsed.scheme or not parsed.netloc:
		raise ValueError(f"Invalid URL: {url}")
	return f"{parsed.scheme}://{parsed.netloc}"


def extract_path(url: str) -> str:
	parsed = urlparse.urlparse(url)
	if not parsed.scheme or not parsed.netloc:
		raise ValueError(f"Invalid URL: {url}")
	path = parsed.path or "/"
	if parsed.query:
		path += "?" + parsed.query
	if parsed.fragment:
		path += "#" + parsed.fragment
	return path


def path_depth(path: str) -> int:
	if path in ("", "/"):
		return 0
	return len([segment for segment in path.split("/") if segment])


def is_content_url(url: str) -> bool:
	lower = url.lower()
	return not any(pattern in lower for pattern in NON_CONTENT_PATTERNS)


def manifest_path(url: str) -> str:
	"""Path key for the export manifest: leading slash, no trailing slash except for root."""
	path = urlparse.urlparse(url).path or "/"
	if not path.startswith("/"):
		path = "/" + path
	if path != "/" and path.endswith("/"):
		path = path.rstrip("/") or "/"
	return path


def safe_slug_from_url(url: str) -> str:
	parsed = urlparse.urlparse(url)
	path = parsed.path.strip("/") or "home"
	candidate = f"{parsed.hostname or 'site'}-{path}"
	slug = slugify(candidate, max_length=120)
	return slug or "page"


def registered_domain(url: str) -> str:
	"""example.co.uk for https://www.shop.example.co.uk/path"""
	ext = _extract(url)
	if ext.domain and ext.suffix:
		return f"{ext.domain}.{ext.suffix}"
	return ext.domain or (urlparse.urlparse(url).hostname or "")


def ensure_scheme(domain: str) -> str:
	domain = domain.strip()
	if not domain.startswith(("http://", "https://")):
		domain = "https://" + domain
	return domain


def domain_key(domain: str) -> str:
	"""Lowercase host for a bare domain or a full URL: 'https://Example.com/x' -> 'example.com'"""
	parsed = urlparse.urlparse(ensure_scheme(domain))
	return (parsed.hostname or domain.strip()).lower()
