"""Command-line interface for sentrymaps."""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from .config import SettingsStore, get_sentry_url
from .core.connector import ChromeConnector, ChromeConnectionError
from .data.attachments import SourceMapAttachmentStore
from .monitors.scripts import ScriptMonitor
from .resolver import OUTCOME_ATTACHED, SourceMapResolver, decode_data_uri
from .resources import SCRIPT_KIND, ResourceDescriptor
from .sentry.client import SentryClient
from .utils.paths import ensure_data_directory, get_settings_path


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s"
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


def is_inspectable_url(url: str) -> bool:
    """Skip chrome://, devtools:// and other non-site pages."""
    return url.startswith(("http://", "https://"))


async def watch_source_maps(host: str, port: int, settings_store: SettingsStore,
                            data_dir: Optional[Path], sentry_url: str,
                            duration: Optional[int] = None,
                            strict_patterns: bool = False) -> int:
    """Attach to every open page tab and resolve source maps until stopped."""
    connector = ChromeConnector(host=host, port=port)
    attachments = SourceMapAttachmentStore(data_dir)
    resolver = SourceMapResolver(SentryClient(sentry_url), attachments.attach,
                                 strict_patterns=strict_patterns)
    monitors: List[ScriptMonitor] = []

    try:
        print(f"Connecting to Chrome at {host}:{port}...")
        await connector.connect()
        print("✓ Connected successfully")

        await connector.call("Target.setDiscoverTargets", {"discover": True})
        targets = connector.filter_page_targets(await connector.get_targets())

        for target in targets:
            url = target.get("url", "")
            if not is_inspectable_url(url):
                continue
            monitor = ScriptMonitor(connector, target["targetId"], url, resolver, settings_store)
            try:
                await monitor.attach()
            except ChromeConnectionError as e:
                logger.warning(f"Skipping tab {url}: {e}")
                continue
            monitors.append(monitor)
            print(f"  Watching {url}")

        if not monitors:
            print("No inspectable tabs found.", file=sys.stderr)
            return 1

        print(f"Source maps are written to {attachments.session_dir} (Press Ctrl+C to stop)")

        if duration:
            await asyncio.sleep(duration)
        else:
            while True:
                await asyncio.sleep(1.0)

        return 0

    except ChromeConnectionError as e:
        print(f"Connection failed: {e}", file=sys.stderr)
        return 1

    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\nMonitoring stopped by user.")
        return 0

    finally:
        for monitor in monitors:
            await monitor.detach()
        attached = sum(m.outcomes.get(OUTCOME_ATTACHED, 0) for m in monitors)
        if monitors:
            print(f"Attached {attached} source map(s)")
        await resolver.aclose()
        if connector.websocket:
            await connector.disconnect()


async def resolve_script_file(script_path: Path, page_url: str, settings_store: SettingsStore,
                              sentry_url: str, script_url: Optional[str] = None,
                              output: Optional[Path] = None,
                              strict_patterns: bool = False) -> int:
    """Resolve the source map of a local script file as if loaded by page_url."""
    try:
        content = script_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        print(f"Could not read {script_path}: {e}", file=sys.stderr)
        return 1

    async def get_content():
        return content, None

    result = {}

    async def attach(resource_url: str, data_uri: str) -> None:
        result["source_map"] = decode_data_uri(data_uri)

    resource = ResourceDescriptor(script_url or script_path.as_uri(), SCRIPT_KIND, get_content)
    resolver = SourceMapResolver(SentryClient(sentry_url), attach, strict_patterns=strict_patterns)

    try:
        outcome = await resolver.handle_resource(resource, page_url, settings_store.load())
    finally:
        await resolver.aclose()

    if outcome != OUTCOME_ATTACHED:
        print(f"No source map: {outcome}", file=sys.stderr)
        return 1

    if output:
        output.write_text(result["source_map"], encoding="utf-8")
        print(f"✓ Source map written to {output}")
    else:
        print(result["source_map"])
    return 0


def show_config(settings_store: SettingsStore) -> int:
    """Print the token state and project configs as JSON."""
    settings = settings_store.load()
    print(json.dumps({
        "settingsFile": str(settings_store.path),
        "authToken": "present" if settings.has_token else "missing",
        "projectConfigs": [c.to_dict() for c in settings.project_configs],
    }, indent=2))
    return 0


def get_default_host() -> str:
    """Get default host from environment or use 127.0.0.1."""
    return os.environ.get("CHROME_DEBUG_HOST", "127.0.0.1")


def get_default_port() -> int:
    """Get default port from environment or use 9222."""
    try:
        return int(os.environ.get("CHROME_DEBUG_PORT", "9222"))
    except ValueError:
        return 9222


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="sentrymaps - resolve Sentry source maps for scripts in Chrome tabs"
    )

    parser.add_argument(
        "--watch",
        action="store_true",
        help="Resolve source maps for scripts loaded in open Chrome tabs"
    )

    parser.add_argument(
        "--resolve-script",
        type=Path,
        metavar="FILE",
        help="Resolve the source map of a local script file (requires --page-url)"
    )

    parser.add_argument(
        "--page-url",
        type=str,
        help="Page URL used for project matching with --resolve-script"
    )

    parser.add_argument(
        "--script-url",
        type=str,
        help="URL the script was served from (default: file URI)"
    )

    parser.add_argument(
        "--output", "-o",
        type=Path,
        help="Write the resolved source map to this file instead of stdout"
    )

    parser.add_argument(
        "--show-config",
        action="store_true",
        help="Show token state and project configs"
    )

    parser.add_argument(
        "--settings",
        type=Path,
        help="Settings file (default: <data dir>/settings.json or SENTRYMAPS_SETTINGS env)"
    )

    parser.add_argument(
        "--data-dir",
        type=Path,
        help="Directory for recovered source maps (default: ~/SentryMapsData)"
    )

    parser.add_argument(
        "--sentry-url",
        default=get_sentry_url(),
        help="Sentry base URL (default: https://sentry.io or SENTRY_URL env)"
    )

    parser.add_argument(
        "--strict-patterns",
        action="store_true",
        help="Treat URL patterns literally except for '*'"
    )

    parser.add_argument(
        "--duration",
        type=int,
        help="Duration in seconds for --watch (default: unlimited)"
    )

    parser.add_argument(
        "--host",
        default=get_default_host(),
        help="Chrome debug host (default: 127.0.0.1 or CHROME_DEBUG_HOST env)"
    )

    parser.add_argument(
        "--port",
        type=int,
        default=get_default_port(),
        help="Chrome debug port (default: 9222 or CHROME_DEBUG_PORT env)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )
    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    data_dir = ensure_data_directory(args.data_dir) if args.data_dir else None
    settings_store = SettingsStore(args.settings or get_settings_path(data_dir))

    if args.show_config:
        return show_config(settings_store)
    elif args.resolve_script:
        if not args.page_url:
            parser.error("--resolve-script requires --page-url")
        return await resolve_script_file(
            args.resolve_script, args.page_url, settings_store, args.sentry_url,
            script_url=args.script_url, output=args.output,
            strict_patterns=args.strict_patterns
        )
    elif args.watch:
        settings = settings_store.load()
        if not settings.has_token:
            print("Warning: no auth token configured, nothing will be resolved", file=sys.stderr)
        return await watch_source_maps(
            args.host, args.port, settings_store, data_dir or ensure_data_directory(),
            args.sentry_url, args.duration, strict_patterns=args.strict_patterns
        )

    parser.print_help()
    return 0


def cli_entry_point():
    """Entry point for pip-installed command."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    cli_entry_point()
