# /// script
# requires-python = ">=3.11"
# dependencies = [
#   "requests",
#   "pandas",
#   "playwright",
# ]
# ///
"""Page Load Benchmark CLI Tool.

Loads one or more pages repeatedly in a real browser, times the
DOMContentLoaded and window load milestones of every load, and prints live
attempt tables plus min/average/sigma-trimmed/max summaries per URL.
"""

from __future__ import annotations

import argparse
import enum
import json
import math
import os
import re
import sys
import time
import tomllib
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import pandas as pd
import requests
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from load_stats import StatisticsTracker
from report_table import ReportTable

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

NAME = "pagebench"

MILESTONES = ("DOMContentLoaded", "WindowLoad")

# Summary rows: (row label, StatisticsTracker method)
SUMMARY_ROWS = [
    ("min", "min"),
    ("avg", "average"),
    ("avg Σ1", "average_within_1_sigma"),
    ("avg Σ2", "average_within_2_sigma"),
    ("max", "max"),
]

SECTION_BREAK = "\n\n"

VALID_BROWSERS = ("chromium", "firefox", "webkit")
VALID_EXPORT_FORMATS = ("csv", "json", "both")

DEFAULT_BROWSER = "chromium"
DEFAULT_PRECISION = 4
DEFAULT_OUTPUT_DIR = "."
VIEWPORT = {"width": 1200, "height": 800}

# How long next_event() lets Playwright dispatch callbacks between queue checks
POLL_INTERVAL_MS = 50

PAGE_CALLBACK_NAME = "__pagebench"

PREFLIGHT_TIMEOUT = 30
MAX_RETRIES = 3
RETRY_BASE_DELAY = 2.0
RETRYABLE_STATUS_CODES = {429, 500, 503}

CONFIG_FILENAMES = ["pagebench.toml"]
CONFIG_SEARCH_PATHS = [
    Path.cwd(),
    Path.home() / ".config" / "pagebench",
]

# Installed in every new document. Reports that the page initialised, then
# reports each milestone once from the top frame.
PAGE_READY_SCRIPT = """
(() => {
    if (window.top !== window) {
        return;
    }
    const notify = (name) => {
        const stamp = Date.now();
        const send = () => window.%(callback)s(name, stamp);
        if (typeof window.%(callback)s === 'function') {
            send();
        } else {
            setTimeout(send, 0);
        }
    };
    notify('initialized');
    document.addEventListener('DOMContentLoaded', function load() {
        document.removeEventListener('DOMContentLoaded', load, false);
        notify('domcontentloaded');
    }, false);
    window.addEventListener('load', function load() {
        window.removeEventListener('load', load, false);
        notify('load');
    }, false);
})();
""" % {"callback": PAGE_CALLBACK_NAME}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class PreflightError(Exception):
    """Raised when a URL cannot be reached before benchmarking, after all retries."""


# ---------------------------------------------------------------------------
# Flags
# ---------------------------------------------------------------------------


class Flag(enum.Enum):
    """Single-character run flags. They can be combined after one dash (-oi)."""

    CACHE = "c"
    RENDER = "i"
    RENDER_FIRST = "l"
    OUTPUT = "o"


FLAG_HELP = {
    Flag.CACHE: "Run with caching.",
    Flag.RENDER: "Render a .png for each load.",
    Flag.RENDER_FIRST: "Render a .png for the first load of each url.",
    Flag.OUTPUT: "Generate a .txt of the output.",
}

FLAG_LONG_NAMES = {
    Flag.CACHE: "--cache",
    Flag.RENDER: "--render",
    Flag.RENDER_FIRST: "--render-first",
    Flag.OUTPUT: "--output",
}

# Flag -> settings it switches on
FLAG_EFFECTS = {
    Flag.CACHE: {"cache": True},
    Flag.RENDER: {"render": True},
    Flag.RENDER_FIRST: {"render": True, "render_first": True},
    Flag.OUTPUT: {"output": True},
}


def apply_flag(namespace: argparse.Namespace, flag: Flag) -> None:
    """Switch on the settings for a flag and record them as explicitly set."""
    effects = FLAG_EFFECTS.get(flag)
    if effects is None:
        raise ValueError(f"No effect defined for flag {flag!r}")

    explicit = getattr(namespace, "_explicit_args", [])
    for dest, value in effects.items():
        setattr(namespace, dest, value)
        explicit.append(dest)
    namespace._explicit_args = explicit


# ---------------------------------------------------------------------------
# Config & Profile
# ---------------------------------------------------------------------------


def discover_config_path() -> Path | None:
    """Find the first existing config file in search paths."""
    for search_dir in CONFIG_SEARCH_PATHS:
        for filename in CONFIG_FILENAMES:
            candidate = search_dir / filename
            if candidate.is_file():
                return candidate
    return None


def load_config(config_path: Path | None) -> dict:
    """Parse a TOML config file and return its contents as a dict."""
    if config_path is None:
        return {}
    try:
        with open(config_path, "rb") as fh:
            return tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        print(f"Error: malformed config file {config_path}: {exc}", file=sys.stderr)
        sys.exit(1)
    except OSError as exc:
        print(f"Error: cannot read config file {config_path}: {exc}", file=sys.stderr)
        sys.exit(1)


def apply_profile(args: argparse.Namespace, config: dict, profile_name: str | None) -> argparse.Namespace:
    """Merge config [settings] and optional profile into args.

    Resolution order (highest priority wins):
      1. Explicit CLI flags
      2. Profile values
      3. [settings] defaults from config
      4. Built-in defaults (already in args)
    """
    settings = config.get("settings", {})
    profile = {}
    if profile_name:
        profiles = config.get("profiles", {})
        if profile_name not in profiles:
            available = ", ".join(profiles.keys()) if profiles else "(none)"
            print(
                f"Error: profile '{profile_name}' not found in config. Available: {available}",
                file=sys.stderr,
            )
            sys.exit(1)
        profile = profiles[profile_name]

    config_keys = (
        "cache",
        "render",
        "render_first",
        "output",
        "output_dir",
        "precision",
        "browser",
        "headed",
        "load_timeout",
        "export",
        "preflight",
        "verbose",
    )

    cli_explicit = set(getattr(args, "_explicit_args", []))

    for key in config_keys:
        if key in cli_explicit:
            continue  # CLI flag takes priority
        if key in profile:
            setattr(args, key, profile[key])
        elif key in settings:
            setattr(args, key, settings[key])

    # render_first implies render, whichever layer set it
    if getattr(args, "render_first", False):
        args.render = True

    return args


# ---------------------------------------------------------------------------
# CLI Argument Parser
# ---------------------------------------------------------------------------


class TrackingAction(argparse.Action):
    """Argparse action that records which flags were explicitly provided."""

    def __call__(self, parser, namespace, values, option_string=None):
        setattr(namespace, self.dest, values)
        explicit = getattr(namespace, "_explicit_args", [])
        explicit.append(self.dest)
        namespace._explicit_args = explicit


class TrackingStoreTrueAction(argparse.Action):
    """Like store_true but tracks that the flag was explicitly set."""

    def __init__(self, option_strings, dest, default=False, required=False, help=None):
        super().__init__(option_strings=option_strings, dest=dest, nargs=0, const=True, default=default, required=required, help=help)

    def __call__(self, parser, namespace, values, option_string=None):
        setattr(namespace, self.dest, True)
        explicit = getattr(namespace, "_explicit_args", [])
        explicit.append(self.dest)
        namespace._explicit_args = explicit


class FlagAction(argparse.Action):
    """Zero-argument action that applies a Flag's effects to the namespace."""

    def __init__(self, option_strings, dest, const=None, default=None, required=False, help=None):
        super().__init__(option_strings=option_strings, dest=dest, nargs=0, const=const, default=default, required=required, help=help)

    def __call__(self, parser, namespace, values, option_string=None):
        flags = getattr(namespace, self.dest, None) or []
        if self.const not in flags:
            flags.append(self.const)
        setattr(namespace, self.dest, flags)
        apply_flag(namespace, self.const)


def format_usage() -> str:
    """Two-line usage plus the flag legend."""
    lines = ["Usage:", f"{NAME} <url> <tries>"]
    for flag in Flag:
        lines.append(f"  -{flag.value}\t{FLAG_HELP[flag]}")
    return "\n".join(lines)


class BenchmarkArgumentParser(argparse.ArgumentParser):
    """Argument parser that answers bad input with the usage legend and exit status 1."""

    def error(self, message):
        print(format_usage())
        print(f"Error: {message}", file=sys.stderr)
        sys.exit(1)


def build_argument_parser() -> BenchmarkArgumentParser:
    """Build the CLI argument parser."""
    parser = BenchmarkArgumentParser(
        prog=NAME,
        description="Page load benchmark: times DOMContentLoaded and window load over repeated loads",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", dest="config", action=TrackingAction, default=None, help="Path to config TOML file")
    parser.add_argument("--profile", dest="profile", action=TrackingAction, default=None, help="Named profile from config file")
    parser.add_argument("-v", "--verbose", dest="verbose", action=TrackingStoreTrueAction, default=False, help="Verbose output to stderr")

    for flag in Flag:
        parser.add_argument(f"-{flag.value}", FLAG_LONG_NAMES[flag], dest="flags", action=FlagAction, const=flag, help=FLAG_HELP[flag])
    parser.set_defaults(cache=False, render=False, render_first=False, output=False)

    parser.add_argument("--output-dir", dest="output_dir", action=TrackingAction, default=DEFAULT_OUTPUT_DIR, help="Directory for the report, exports and snapshots")
    parser.add_argument("--precision", dest="precision", action=TrackingAction, type=int, default=DEFAULT_PRECISION, help="Decimals shown for timings (default: 4)")
    parser.add_argument("--browser", dest="browser", action=TrackingAction, default=DEFAULT_BROWSER, choices=VALID_BROWSERS, help="Browser engine (default: chromium)")
    parser.add_argument("--headed", dest="headed", action=TrackingStoreTrueAction, default=False, help="Show the browser window")
    parser.add_argument("--load-timeout", dest="load_timeout", action=TrackingAction, type=float, default=None, help="Retry an attempt after this many idle seconds (default: wait forever)")
    parser.add_argument("--export", dest="export", action=TrackingAction, default=None, choices=VALID_EXPORT_FORMATS, help="Also write raw attempt timings as csv, json, or both")
    parser.add_argument("--preflight", dest="preflight", action=TrackingStoreTrueAction, default=False, help="Drop URLs that do not answer an HTTP GET before benchmarking")

    parser.add_argument("urls", type=parse_url_list, help="Comma-separated URLs to benchmark")
    parser.add_argument("tries", type=int, help="Number of recorded loads per URL")
    return parser


def normalize_argv(argv: list[str]) -> list[str]:
    """Rejoin a URL list that the shell split after its commas ("a.com, b.com").

    A token is merged into the previous one only when that one ends with a
    comma; every other token, spaces included, is passed through untouched.
    """
    normalized: list[str] = []
    for token in argv:
        if normalized and normalized[-1].endswith(","):
            normalized[-1] += token.lstrip()
        else:
            normalized.append(token)
    return normalized


def parse_args(argv: list[str], parser: BenchmarkArgumentParser | None = None) -> argparse.Namespace:
    """Parse argv (flags and positionals in any order) and validate the try count."""
    parser = parser or build_argument_parser()
    args = parser.parse_intermixed_args(normalize_argv(argv))
    if args.tries < 1:
        parser.error("tries must be at least 1")
    if not args.urls:
        parser.error("no URLs given")
    return args


# ---------------------------------------------------------------------------
# URL Handling
# ---------------------------------------------------------------------------


def get_safe_url(url: str) -> str:
    """Prefix http:// when the URL has no http(s) scheme."""
    url = url.strip()
    if not re.match(r"^https?://", url, re.IGNORECASE):
        url = "http://" + url
    return url


def parse_url_list(value: str) -> list[str]:
    """Split a comma-separated URL list, dropping blank entries. Order and duplicates are kept."""
    return [get_safe_url(part) for part in value.split(",") if part.strip()]


def safe_filename(url: str, attempt_number: int) -> str:
    """Snapshot file name: scheme dropped, non-alphanumeric runs collapsed to one hyphen."""
    name = re.sub(r"https?://", "", f"{url}-{attempt_number}", count=1)
    name = re.sub(r"[^a-z0-9]", "-", name, flags=re.IGNORECASE)
    name = re.sub(r"-+", "-", name)
    return name + ".png"


# ---------------------------------------------------------------------------
# Preflight
# ---------------------------------------------------------------------------


def check_url(url: str, timeout: float = PREFLIGHT_TIMEOUT) -> int:
    """GET a URL and return its status code.

    Retries on connection errors and 429/500/503 with exponential backoff.
    """
    last_error: Exception | None = None
    for attempt in range(MAX_RETRIES + 1):
        try:
            response = requests.get(url, timeout=timeout)

            if response.status_code not in RETRYABLE_STATUS_CODES:
                return response.status_code

            last_error = PreflightError(f"HTTP {response.status_code} for {url}")
        except requests.RequestException as exc:
            last_error = exc

        if attempt < MAX_RETRIES:
            time.sleep(RETRY_BASE_DELAY * (2**attempt))

    raise PreflightError(f"Failed after {MAX_RETRIES + 1} attempts for {url}: {last_error}")


def preflight_urls(urls: list[str], verbose: bool = False) -> list[str]:
    """Return the URLs that answered, warning about the ones that did not."""
    reachable: list[str] = []
    for url in urls:
        try:
            status = check_url(url)
        except PreflightError as exc:
            print(f"Warning: skipping unreachable URL: {exc}", file=sys.stderr)
            continue
        if verbose:
            print(f"  Preflight {url}: HTTP {status}", file=sys.stderr)
        reachable.append(url)
    return reachable


# ---------------------------------------------------------------------------
# Browser Events
# ---------------------------------------------------------------------------


class EventKind(enum.Enum):
    LOAD_STARTED = "load_started"
    INITIALIZED = "initialized"
    DOM_CONTENT_LOADED = "domcontentloaded"
    WINDOW_LOAD = "load"
    PAGE_ERROR = "page_error"
    STALLED = "stalled"


# In-page callback names -> events
PAGE_CALLBACKS = {
    "initialized": EventKind.INITIALIZED,
    "domcontentloaded": EventKind.DOM_CONTENT_LOADED,
    "load": EventKind.WINDOW_LOAD,
}


@dataclass(frozen=True)
class BrowserEvent:
    kind: EventKind
    timestamp: float
    detail: str | None = None


class PlaywrightBrowser:
    """Single-page browser that reports load lifecycle events through a queue.

    Callbacks from Playwright only enqueue events; the caller consumes them one
    at a time with next_event(), so exactly one navigation is in flight.
    """

    def __init__(
        self,
        browser_name: str = DEFAULT_BROWSER,
        headless: bool = True,
        clear_cache: bool = True,
        load_timeout: float | None = None,
        viewport: dict | None = None,
    ) -> None:
        self.browser_name = browser_name
        self.headless = headless
        self.clear_cache = clear_cache
        self.load_timeout = load_timeout
        self.viewport = dict(viewport or VIEWPORT)
        self._events: deque[BrowserEvent] = deque()
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None

    def __enter__(self) -> PlaywrightBrowser:
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def start(self) -> None:
        self._playwright = sync_playwright().start()
        launcher = getattr(self._playwright, self.browser_name)
        self._browser = launcher.launch(headless=self.headless)
        self._new_page()

    def close(self) -> None:
        if self._context is not None:
            self._context.close()
            self._context = None
        if self._browser is not None:
            self._browser.close()
            self._browser = None
        if self._playwright is not None:
            self._playwright.stop()
            self._playwright = None

    def _new_page(self) -> None:
        """Replace the context and page; a fresh context starts with an empty cache."""
        if self._context is not None:
            self._context.close()
        self._context = self._browser.new_context(viewport=self.viewport)
        self._page = self._context.new_page()
        self._page.expose_function(PAGE_CALLBACK_NAME, self._on_page_callback)
        self._page.add_init_script(PAGE_READY_SCRIPT)
        self._page.on("pageerror", self._on_page_error)

    def _queue(self, kind: EventKind, timestamp: float | None = None, detail: str | None = None) -> None:
        self._events.append(BrowserEvent(kind, time.time() if timestamp is None else timestamp, detail))

    def _on_page_callback(self, name: str, stamp_ms: float | None = None) -> None:
        kind = PAGE_CALLBACKS.get(name)
        if kind is None:
            return
        self._queue(kind, stamp_ms / 1000 if stamp_ms is not None else None)

    def _on_page_error(self, error) -> None:
        self._queue(EventKind.PAGE_ERROR, detail=str(error))

    def open(self, url: str) -> None:
        """Start navigating to url. Returns once the response is committed."""
        if self.clear_cache:
            self._new_page()
        # Anything still queued belongs to the page being navigated away from
        self._events.clear()
        self._queue(EventKind.LOAD_STARTED)
        timeout_ms = self.load_timeout * 1000 if self.load_timeout else 0
        try:
            self._page.goto(url, wait_until="commit", timeout=timeout_ms)
        except PlaywrightError as exc:
            self._queue(EventKind.PAGE_ERROR, detail=str(exc))

    def render(self, path: str | Path) -> None:
        """Screenshot the current viewport to path."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._page.screenshot(path=str(path))
        except PlaywrightError as exc:
            print(f"Warning: snapshot failed for {path}: {exc}", file=sys.stderr)

    def next_event(self) -> BrowserEvent:
        """Block until the page reports an event (or STALLED once load_timeout passes)."""
        idle_since = time.monotonic()
        while not self._events:
            if self.load_timeout is not None and time.monotonic() - idle_since >= self.load_timeout:
                return BrowserEvent(EventKind.STALLED, time.time(), f"no page events for {self.load_timeout}s")
            self._page.wait_for_timeout(POLL_INTERVAL_MS)
        return self._events.popleft()


# ---------------------------------------------------------------------------
# Load Session
# ---------------------------------------------------------------------------


class SessionState(enum.Enum):
    PENDING_FIRST_LOAD = "pending_first_load"
    IN_PROGRESS = "in_progress"
    EXHAUSTED = "exhausted"
    FINISHED = "finished"


class Action(enum.Enum):
    NAVIGATE = "navigate"
    RENDER = "render"


@dataclass(frozen=True)
class Command:
    action: Action
    target: str


@dataclass
class Attempt:
    """One navigation of a URL, from load start to both milestones."""

    ordinal: int
    started_at: float
    milestones: dict[str, float] = field(default_factory=dict)
    recorded: bool = False

    @property
    def is_complete(self) -> bool:
        return all(name in self.milestones for name in MILESTONES)

    def elapsed(self, milestone: str) -> float:
        return self.milestones[milestone] - self.started_at


def _seconds_formatter(precision: int | None):
    def format_seconds(row: dict, column_name: str):
        value = row.get(column_name)
        if value is None or (isinstance(value, float) and math.isnan(value)):
            return None
        return value if precision is None else round(value, precision)

    return format_seconds


def build_table_columns(precision: int | None = DEFAULT_PRECISION) -> list[dict]:
    """Row label column followed by one column per milestone."""
    columns = [{"name": "rowLabel", "title": "", "min_width": 6}]
    for milestone in MILESTONES:
        columns.append({"name": milestone, "title": milestone, "format": _seconds_formatter(precision)})
    return columns


class LoadSession:
    """Drives the repeated loads of one URL.

    The session is fed browser events through handle() and answers with the
    commands the dispatcher should run next. A URL with tries=N is navigated
    N + 1 times; the final navigation closes the last recorded attempt and is
    not itself recorded. Attempts missing a milestone are discarded and redone
    without using up a try. The snapshot decision is made before that check,
    so a retried attempt can be snapshotted again under the same attempt
    number.
    """

    def __init__(
        self,
        url: str,
        tries: int,
        precision: int | None = DEFAULT_PRECISION,
        render: bool = False,
        render_first: bool = False,
        image_dir: Path | None = None,
        verbose: bool = False,
    ) -> None:
        self.url = url
        self.tries_total = tries + 1
        self.tries_remaining = self.tries_total
        self.render = render or render_first
        self.render_first = render_first
        self.image_dir = Path(image_dir) if image_dir is not None else Path(".")
        self.verbose = verbose

        self.state = SessionState.PENDING_FIRST_LOAD
        self.attempts: list[Attempt] = []
        self.current: Attempt | None = None
        self.page_did_load = True
        self.page_errors = 0
        self.retries = 0

        self.stats = StatisticsTracker(precision)
        self.tables = {
            "attempts": ReportTable(build_table_columns(precision)),
            "stats": ReportTable(build_table_columns(precision)),
        }

    @property
    def recorded_attempts(self) -> list[Attempt]:
        return [attempt for attempt in self.attempts if attempt.recorded]

    def start(self) -> list[Command]:
        """Commands for the first navigation."""
        return self._navigation_cycle()

    def handle(self, event: BrowserEvent) -> list[Command]:
        """Apply one browser event and return the commands it triggers."""
        if self.state is SessionState.FINISHED:
            return []

        kind = event.kind
        if kind is EventKind.LOAD_STARTED:
            self._on_load_started(event.timestamp)
            return []
        if kind is EventKind.INITIALIZED:
            self.page_did_load = True
            return []
        if kind is EventKind.DOM_CONTENT_LOADED:
            self._stamp("DOMContentLoaded", event.timestamp)
            return []
        if kind is EventKind.WINDOW_LOAD:
            self._stamp("WindowLoad", event.timestamp)
            return self._render_commands() + self._navigation_cycle()
        if kind is EventKind.PAGE_ERROR:
            self.page_errors += 1
            if self.verbose:
                print(f"  Page error on {self.url}: {event.detail}", file=sys.stderr)
            return []
        if kind is EventKind.STALLED:
            if self.verbose:
                print(f"  Stalled on {self.url}: {event.detail}", file=sys.stderr)
            return self._navigation_cycle()
        raise ValueError(f"Unhandled browser event: {kind!r}")

    # -- events -------------------------------------------------------------

    def _on_load_started(self, timestamp: float) -> None:
        # Repeated load-started notifications for the same try keep the first record
        if self.current is None or self.current.ordinal != self.tries_remaining:
            self.current = Attempt(ordinal=self.tries_remaining, started_at=timestamp)
            self.attempts.append(self.current)

    def _stamp(self, milestone: str, timestamp: float) -> None:
        if self.current is not None:
            self.current.milestones[milestone] = timestamp

    def _render_commands(self) -> list[Command]:
        if not self.render or not self.tries_remaining:
            return []
        if self.render_first and self.tries_remaining != self.tries_total - 1:
            return []
        attempt_number = self.tries_total - self.tries_remaining
        path = self.image_dir / safe_filename(self.url, attempt_number)
        return [Command(Action.RENDER, str(path))]

    # -- navigation cycle ---------------------------------------------------

    def _navigation_cycle(self) -> list[Command]:
        if not self.tries_remaining:
            self.state = SessionState.EXHAUSTED
            self._finish()
            return []

        if self.state is SessionState.PENDING_FIRST_LOAD:
            print(self.url)
            self.tables["attempts"].live().start()
            self.state = SessionState.IN_PROGRESS

        self._update_tries()
        self._record(self.current)
        return [Command(Action.NAVIGATE, self.url)]

    def _update_tries(self) -> None:
        discarded = False
        if self.current is not None and not self.current.is_complete:
            self.attempts.remove(self.current)
            if self.verbose:
                missing = ", ".join(m for m in MILESTONES if m not in self.current.milestones)
                print(f"  Retrying {self.url} (missing {missing})", file=sys.stderr)
            self.current = None
            self.retries += 1
            discarded = True

        # Only a page that initialised since the last cycle uses up a try
        if self.page_did_load:
            self.page_did_load = False
            if not discarded:
                self.tries_remaining -= 1

    def _record(self, attempt: Attempt | None) -> None:
        if attempt is None or attempt.recorded or not attempt.is_complete:
            return
        attempt.recorded = True

        row: dict[str, object] = {"rowLabel": self.tries_total - attempt.ordinal}
        for milestone in MILESTONES:
            elapsed = attempt.elapsed(milestone)
            row[milestone] = elapsed
            self.stats.add(milestone, elapsed)

        self.tables["attempts"].add_row(row)
        self.tables["attempts"].live().print()

    def _finish(self) -> None:
        self.tables["attempts"].live().end()

        for label, method in SUMMARY_ROWS:
            row: dict[str, object] = {"rowLabel": label}
            for milestone in MILESTONES:
                row[milestone] = getattr(self.stats, method)(milestone)
            self.tables["stats"].add_row(row)
        self.tables["stats"].print()

        if self.page_errors and self.verbose:
            print(f"  {self.page_errors} page error(s) ignored on {self.url}", file=sys.stderr)
        self.state = SessionState.FINISHED


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


def execute_command(browser, command: Command) -> None:
    if command.action is Action.NAVIGATE:
        browser.open(command.target)
    elif command.action is Action.RENDER:
        browser.render(command.target)
    else:
        raise ValueError(f"Unhandled command: {command.action!r}")


def drive_session(session: LoadSession, browser) -> LoadSession:
    """Run one session's event loop until it finishes."""
    commands = session.start()
    while True:
        for command in commands:
            execute_command(browser, command)
        if session.state is SessionState.FINISHED:
            return session
        commands = session.handle(browser.next_event())


def run_benchmarks(
    urls: list[str],
    tries: int,
    browser,
    precision: int | None = DEFAULT_PRECISION,
    render: bool = False,
    render_first: bool = False,
    image_dir: Path | None = None,
    verbose: bool = False,
) -> list[LoadSession]:
    """Benchmark each URL in order, one session at a time."""
    sessions: list[LoadSession] = []
    for url in urls:
        session = LoadSession(
            url,
            tries,
            precision=precision,
            render=render,
            render_first=render_first,
            image_dir=image_dir,
            verbose=verbose,
        )
        drive_session(session, browser)
        sessions.append(session)
    return sessions


# ---------------------------------------------------------------------------
# Output Formats
# ---------------------------------------------------------------------------


def generate_run_name() -> str:
    """Run-identifying name used for the report, exports and snapshot folder."""
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return f"{NAME}-{timestamp}"


def clean_content(content: str) -> str:
    """Replace the sigma sign, which some terminals and editors mangle."""
    return content.replace("Σ", "S")


def build_text_report(sessions: list[LoadSession]) -> str:
    """Summaries for every URL first, then each URL's full tables."""
    header = ""
    body = ""
    for session in sessions:
        url_line = session.url + "\n"
        attempts_table = session.tables["attempts"].get()
        stats_table = session.tables["stats"].get()
        header += url_line + stats_table
        body += url_line + attempts_table + stats_table + SECTION_BREAK
    footer = ""
    return clean_content(SECTION_BREAK.join([header, body, footer]))


def write_text_report(sessions: list[LoadSession], output_path: Path) -> str:
    """Write the text report. Returns the file path."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(build_text_report(sessions), encoding="utf-8")
    return str(output_path)


def build_attempts_dataframe(sessions: list[LoadSession]) -> pd.DataFrame:
    """One row per recorded attempt with its milestone timings in seconds."""
    rows = []
    for session in sessions:
        for attempt in session.recorded_attempts:
            row = {"url": session.url, "attempt": session.tries_total - attempt.ordinal}
            for milestone in MILESTONES:
                row[milestone] = attempt.elapsed(milestone)
            rows.append(row)
    return pd.DataFrame(rows, columns=["url", "attempt", *MILESTONES])


def summarize_session(session: LoadSession) -> dict:
    """Per-milestone sample count and aggregates for a session, NaN reported as None."""
    summary = {}
    for milestone in MILESTONES:
        values = {"count": session.stats.count(milestone)}
        for _, method in SUMMARY_ROWS:
            value = getattr(session.stats, method)(milestone)
            values[method] = None if value is None or math.isnan(value) else value
        summary[milestone] = values
    return summary


def output_csv(dataframe: pd.DataFrame, output_path: Path) -> str:
    """Write DataFrame to CSV. Returns the file path."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    dataframe.to_csv(output_path, index=False)
    return str(output_path)


def output_json(dataframe: pd.DataFrame, sessions: list[LoadSession], output_path: Path, tries: int) -> str:
    """Write attempts and per-URL summaries to structured JSON with metadata. Returns the file path."""
    output_path.parent.mkdir(parents=True, exist_ok=True)

    output_data = {
        "metadata": {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "total_urls": len(sessions),
            "tries": tries,
            "tool_version": __version__,
        },
        "results": dataframe.to_dict(orient="records"),
        "summary": {session.url: summarize_session(session) for session in sessions},
    }

    with open(output_path, "w") as fh:
        json.dump(output_data, fh, indent=2, default=str)

    return str(output_path)


def write_data_files(
    sessions: list[LoadSession],
    export_format: str,
    output_dir: Path,
    run_name: str,
    tries: int,
) -> list[str]:
    """Write CSV and/or JSON data files. Returns list of written paths."""
    dataframe = build_attempts_dataframe(sessions)
    written_files: list[str] = []

    if export_format in ("csv", "both"):
        written_files.append(output_csv(dataframe, output_dir / f"{run_name}.csv"))

    if export_format in ("json", "both"):
        written_files.append(output_json(dataframe, sessions, output_dir / f"{run_name}.json", tries))

    print("\nResults written to:", file=sys.stderr)
    for filepath in written_files:
        print(f"  {filepath}", file=sys.stderr)

    return written_files


def finalize_output(sessions: list[LoadSession], args: argparse.Namespace, run_name: str) -> None:
    """Write the requested report and export files after the last URL."""
    output_dir = Path(args.output_dir)

    if args.output:
        report_path = write_text_report(sessions, output_dir / f"{run_name}.txt")
        print("Output generated.")
        print(os.path.abspath(report_path))

    if args.export:
        write_data_files(sessions, args.export, output_dir, run_name, args.tries)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    parser = build_argument_parser()
    args = parse_args(sys.argv[1:] if argv is None else argv, parser)

    # Load config
    config_path = Path(args.config) if args.config else discover_config_path()
    config = load_config(config_path)
    args = apply_profile(args, config, args.profile)

    urls = args.urls
    if args.preflight:
        urls = preflight_urls(urls, verbose=args.verbose)
        if not urls:
            print("Error: no reachable URLs left after preflight.", file=sys.stderr)
            sys.exit(1)

    run_name = generate_run_name()
    image_dir = Path(args.output_dir) / f"{run_name}-img"

    if args.verbose:
        print(f"Benchmarking {len(urls)} URL(s) x {args.tries} tries with {args.browser}", file=sys.stderr)

    with PlaywrightBrowser(
        browser_name=args.browser,
        headless=not args.headed,
        clear_cache=not args.cache,
        load_timeout=args.load_timeout,
    ) as browser:
        sessions = run_benchmarks(
            urls,
            args.tries,
            browser,
            precision=args.precision,
            render=args.render,
            render_first=args.render_first,
            image_dir=image_dir,
            verbose=args.verbose,
        )

    finalize_output(sessions, args, run_name)


if __name__ == "__main__":
    main()
