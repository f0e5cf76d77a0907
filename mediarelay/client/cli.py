# mediarelay/client/cli.py
"""
Run the client-side probe from a terminal.

Usage:
    mediarelay-probe dQw4w9WgXcQ
    mediarelay-probe dQw4w9WgXcQ --type video --proxy http://127.0.0.1:8118
    mediarelay-probe dQw4w9WgXcQ --relay http://localhost:8099/api/download

    # Full acquisition through a running server, files written to ./out
    mediarelay-probe dQw4w9WgXcQ --acquire http://localhost:8099 --output out

Exit status is 0 when a source was found, 1 otherwise.
"""
import argparse
import asyncio
import sys
from pathlib import Path

from mediarelay.client.acquisition import AcquisitionController
from mediarelay.client.probe import ClientProbe, client_context
from mediarelay.core.domain import MediaKind
from mediarelay.core.session import SessionStatus
from mediarelay.infra.http_client import close_all_sessions
from mediarelay.infra.logging_config import setup_logging


async def _probe(args) -> int:
    probe = ClientProbe(context=client_context(proxy=args.proxy, relay_base=args.relay))
    report = await probe.probe(args.content_id, MediaKind(args.type))

    for line in report.logs:
        print(line)
    if args.verbose:
        for error in report.errors:
            print(f"  ! {error}")

    if not report.found:
        print("No source found", file=sys.stderr)
        return 1
    print(f"{report.candidate.origin_backend.value}: {report.candidate.title}")
    print(report.candidate.source_url)
    return 0


async def _acquire(args) -> int:
    controller = AcquisitionController(args.acquire, relay_base=args.relay)
    session = await controller.acquire(args.content_id, MediaKind(args.type))

    if session.status is SessionStatus.FALLBACK:
        print(f"Fallback: {session.fallback_url} ({session.error})", file=sys.stderr)
        return 1

    output = Path(args.output)
    output.mkdir(parents=True, exist_ok=True)
    for media in session.results.values():
        # Only the final component; the name comes from a response header.
        path = output / (Path(media.filename).name or "download")
        path.write_bytes(media.data)
        print(f"{media.kind.value}: {path} ({media.size_bytes} bytes)")
    return 0


async def _run(args) -> int:
    try:
        if args.acquire:
            return await _acquire(args)
        return await _probe(args)
    finally:
        await close_all_sessions()


def main():
    parser = argparse.ArgumentParser(
        description="Resolve a media stream from this machine's network",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("content_id", help="Canonical-host video id")
    parser.add_argument("--type", "-t", choices=[k.value for k in MediaKind], default="audio")
    parser.add_argument("--proxy", "-p", help="Outbound HTTP proxy for every request")
    parser.add_argument("--relay", "-r", help="Server relay endpoint (…/api/download) to wrap requests through")
    parser.add_argument("--acquire", "-a", metavar="SERVER", help="Run the full acquisition against this server")
    parser.add_argument("--output", "-o", default=".", help="Directory for acquired files")
    parser.add_argument("--verbose", "-v", action="store_true", help="Print per-endpoint errors")

    args = parser.parse_args()
    setup_logging(level="DEBUG" if args.verbose else "WARNING")

    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
