import argparse
import os
import re
import sys
import threading
from collections import Counter

import requests
from colorama import Fore, Style, init
from requests.adapters import HTTPAdapter

ARCHIVE_URL = (
    "https://web.archive.org/cdx/search/cdx"
    "?url={domain}/*&output=txt&collapse=urlkey&fl=original&page=/"
)
DEFAULT_PLACEHOLDER = "FUZZ"
DEFAULT_TIMEOUT = 300
PROGRESS_EVERY = 5000

_SCHEME_RE = re.compile(r"https?://")

DROP_REPEATED_SCHEME = "repeated scheme"
DROP_NO_QUERY = "no query string"
DROP_NO_PARAMS = "no key=value parameters"


def info(msg):
    print(f"{Fore.BLUE}[*]{Style.RESET_ALL} {msg}")


def good(msg):
    print(f"{Fore.GREEN}[+]{Style.RESET_ALL} {msg}")


def bad(msg):
    print(f"{Fore.YELLOW}[-]{Style.RESET_ALL} {msg}")


def error(msg):
    print(f"{Fore.RED}[!]{Style.RESET_ALL} {msg}")


class FetchCache:
    """Per-run store of archive results keyed by domain."""

    def __init__(self):
        self._urls = {}
        self._lock = threading.Lock()

    def get(self, domain):
        with self._lock:
            return self._urls.get(domain)

    def put(self, domain, urls):
        with self._lock:
            self._urls[domain] = urls

    def __contains__(self, domain):
        with self._lock:
            return domain in self._urls

    def __len__(self):
        with self._lock:
            return len(self._urls)


def load_domains(path):
    """Read one domain per line, skipping blank lines."""
    with open(path, encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip()]


def make_session():
    """Create a requests session for the archive index."""
    s = requests.Session()
    s.mount("https://", HTTPAdapter())
    return s


def build_archive_url(domain):
    return ARCHIVE_URL.format(domain=domain)


def fetch_urls(domain, cache=None, session=None, timeout=DEFAULT_TIMEOUT):
    """Return every archived URL for *domain*, one entry per non-empty line.

    A cached result is returned without touching the network. HTTP errors
    and connection failures before the body arrives propagate as
    ``requests.RequestException``. If the connection drops mid-body the
    lines received so far are returned, but they are not cached.
    """
    if cache is not None:
        cached = cache.get(domain)
        if cached is not None:
            return cached

    if session is None:
        with make_session() as own_session:
            return fetch_urls(domain, cache=cache, session=own_session, timeout=timeout)

    resp = session.get(build_archive_url(domain), timeout=timeout, stream=True)
    try:
        resp.raise_for_status()

        # CDX bodies are UTF-8 even though text/plain makes requests guess Latin-1
        urls = []
        try:
            for raw in resp.iter_lines():
                if not raw:
                    continue
                urls.append(raw.decode("utf-8", errors="replace"))
                if len(urls) % PROGRESS_EVERY == 0:
                    sys.stdout.write(f"\r{Fore.BLUE}[*]{Style.RESET_ALL} Fetched: {len(urls)} URLs")
                    sys.stdout.flush()
        except (requests.exceptions.ChunkedEncodingError, requests.exceptions.ConnectionError) as e:
            if len(urls) >= PROGRESS_EVERY:
                sys.stdout.write("\n")
            error(f"Connection lost after {len(urls)} URLs for {domain} ({e}), keeping partial results")
            return urls
    finally:
        resp.close()

    if len(urls) >= PROGRESS_EVERY:
        sys.stdout.write("\n")

    if cache is not None:
        cache.put(domain, urls)
    return urls


def has_repeated_scheme(url):
    """True if *url* holds two or more http:// or https:// prefixes."""
    return len(_SCHEME_RE.findall(url)) >= 2


def _clean(url, placeholder):
    """Return ``(cleaned, None)`` or ``(None, reason)`` for a dropped URL."""
    if has_repeated_scheme(url):
        return None, DROP_REPEATED_SCHEME

    base, sep, query = url.partition("?")
    if not sep:
        return None, DROP_NO_QUERY

    params = []
    for param in query.split("&"):
        parts = param.split("=")
        if len(parts) < 2:
            continue
        params.append("=".join([parts[0]] + [placeholder] * (len(parts) - 1)))

    if not params:
        return None, DROP_NO_PARAMS
    return base + "?" + "&".join(params), None


def clean_url(url, placeholder=DEFAULT_PLACEHOLDER):
    """Replace every query value in *url* with *placeholder*.

    Returns ``None`` for URLs that are dropped: repeated scheme, no ``?``,
    or no ``key=value`` parameter left in the query string. Values with
    embedded ``=`` keep their segment count, so ``id=1=2`` becomes
    ``id=FUZZ=FUZZ``.
    """
    return _clean(url, placeholder)[0]


def clean_urls(urls, placeholder=DEFAULT_PLACEHOLDER):
    """Normalise and deduplicate *urls*. Order of the result is arbitrary."""
    cleaned = set()
    for u in urls:
        c = clean_url(u, placeholder)
        if c is not None:
            cleaned.add(c)
    return list(cleaned)


def count_dropped(urls):
    """Count the URLs ``clean_url`` rejects, keyed by the reason they were dropped."""
    dropped = Counter()
    for u in urls:
        reason = _clean(u, DEFAULT_PLACEHOLDER)[1]
        if reason is not None:
            dropped[reason] += 1
    return dropped


def save_urls(output_dir, domain, urls):
    """Write *urls* to ``<output_dir>/<domain>.txt`` and return the path."""
    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, f"{domain}.txt")
    with open(path, "w", encoding="utf-8") as f:
        for u in urls:
            f.write(u + "\n")
    return path


def process_domain(domain, output_dir, placeholder, cache, session, timeout=DEFAULT_TIMEOUT):
    """Fetch, clean and save one domain. Returns the cleaned URLs, or None if the fetch failed."""
    info(f"Fetching URLs for {domain} from Wayback Machine...")
    try:
        urls = fetch_urls(domain, cache=cache, session=session, timeout=timeout)
    except requests.RequestException as e:
        error(f"Error fetching URLs for {domain}: {e}")
        return None

    cleaned = clean_urls(urls, placeholder)
    good(f"Found {len(urls)} URLs")
    good(f"Found {len(cleaned)} URLs after cleaning")

    for reason, n in sorted(count_dropped(urls).items()):
        info(f"Skipped {n} URLs: {reason}")

    if not cleaned:
        bad("No URLs found after cleaning, skipping file creation")
        return cleaned

    try:
        path = save_urls(output_dir, domain, cleaned)
    except OSError as e:
        error(f"Error saving cleaned URLs for {domain}: {e}")
        return cleaned

    good(f"Saved cleaned URLs to {path}")
    return cleaned


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Fetch Wayback Machine URLs and turn their parameters into fuzzing templates."
    )
    parser.add_argument("-l", "--list", required=True, help="File with list of domains (one per line)")
    parser.add_argument("-o", "--output", default="results", help="Output directory (default: results)")
    parser.add_argument("-p", "--placeholder", default=DEFAULT_PLACEHOLDER,
                        help=f"Value written in place of every parameter value (default: {DEFAULT_PLACEHOLDER})")
    parser.add_argument("-t", "--timeout", type=float, default=DEFAULT_TIMEOUT,
                        help=f"Request timeout in seconds (default: {DEFAULT_TIMEOUT})")
    args = parser.parse_args(argv)

    init()

    try:
        os.makedirs(args.output, exist_ok=True)
    except OSError as e:
        error(f"Error creating output directory {args.output}: {e}")
        return 1

    try:
        domains = load_domains(args.list)
    except OSError as e:
        error(f"Error reading domain list {args.list}: {e}")
        return 1

    cache = FetchCache()
    session = make_session()
    try:
        for domain in domains:
            process_domain(domain, args.output, args.placeholder, cache, session, args.timeout)
    except KeyboardInterrupt:
        error("Stopped, keeping results saved so far")
    finally:
        session.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
