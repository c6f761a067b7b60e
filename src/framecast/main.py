"""
Framecast - Main Entry Point

Usage:
    # Run the staging/encode server
    framecast serve --port 8000

    # Capture a video file through a running server, publish and download it
    framecast capture input.mp4 --owner user-42 --out ./downloads

    # Remove staging partitions idle longer than the TTL
    framecast reap --ttl 3600

    # Encode a session already staged on this host, without the server
    framecast encode <session-id> --frames 60 --fps 30 --width 640 --height 480 -o out.mp4
"""
import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from .config import Config
from .errors import FramecastError
from .log import get_logger

log = get_logger("main")


def _print_progress(percent: float, message: str) -> None:
    print(f"\r   [{percent:5.1f}%] {message:<40}", end="", flush=True)


# ─────────────────────────────────────────────────────────────
# Commands
# ─────────────────────────────────────────────────────────────

def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn
    from .backend.server import create_app

    uvicorn.run(create_app(), host=args.host, port=args.port)
    return 0


async def _capture(args: argparse.Namespace) -> int:
    from .orchestrator import BatchTransport, CaptureOrchestrator, VideoFileSource
    from .tools.publish import publish_and_deliver, video_filename

    source = VideoFileSource(args.video, width=args.width, height=args.height)
    try:
        async with BatchTransport(base_url=args.server) as transport:
            result = await CaptureOrchestrator(
                source,
                transport,
                fps=args.fps,
                batch_size=args.batch_size,
                progress=None if args.quiet else _print_progress,
            ).capture()
            if not args.quiet:
                print()

            filename = video_filename(result.session_id)
            publish = None
            if args.owner:
                async def publish():
                    return await transport.publish(result.video, filename, args.owner)

            report = await publish_and_deliver(
                result.video,
                filename,
                publish=publish,
                download_dir=args.out,
            )
    finally:
        source.close()

    if report.published:
        print(f"☁️  Published: {report.published.get('publicUrl')}")
    if report.publish_error:
        print(f"⚠️  Publish failed: {report.publish_error}", file=sys.stderr)
    if report.download_path:
        print(f"📁 Saved: {report.download_path}")
    if report.download_error:
        print(f"⚠️  Local save failed: {report.download_error}", file=sys.stderr)

    return 0 if report.any_succeeded else 1


def cmd_capture(args: argparse.Namespace) -> int:
    return asyncio.run(_capture(args))


def cmd_reap(args: argparse.Namespace) -> int:
    from .staging import SessionStore

    store = SessionStore(args.root or Config.STAGING_ROOT)
    reaped = store.reap_orphans(args.ttl)
    print(f"🧹 Reaped {len(reaped)} session(s)")
    for session_id in reaped:
        print(f"   - {session_id}")
    return 0


def cmd_encode(args: argparse.Namespace) -> int:
    from .renderer import Finalizer, FinalizeRequest
    from .staging import SessionRegistry, SessionStore

    store = SessionStore(args.root or Config.STAGING_ROOT)
    finalizer = Finalizer(store, SessionRegistry(), strategy=args.strategy)
    artifact = finalizer.finalize(FinalizeRequest(
        session_id=args.session_id,
        total_frames=args.frames,
        fps=args.fps,
        width=args.width,
        height=args.height,
    ))
    out = Path(args.output or f"output-{args.session_id}.mp4")
    out.write_bytes(artifact.data)
    print(f"✅ Wrote {out} ({artifact.size / 1024 / 1024:.2f} MB)")
    return 0


# ─────────────────────────────────────────────────────────────
# Parser
# ─────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="framecast",
        description="Batched frame capture and H.264 encode pipeline",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the staging/encode server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.set_defaults(func=cmd_serve)

    capture = sub.add_parser("capture", help="Capture a video file through the server")
    capture.add_argument("video", help="Input video path")
    capture.add_argument("--server", default=Config.SERVER_URL, help="Server base URL")
    capture.add_argument("--owner", help="Owner id for publishing (skip publish if absent)")
    capture.add_argument("--out", default=".", help="Directory for the local copy")
    capture.add_argument("--fps", type=float, default=Config.CAPTURE_FPS)
    capture.add_argument("--batch-size", type=int, default=Config.CAPTURE_BATCH_SIZE)
    capture.add_argument("--width", type=int, help="Output width (default: video width)")
    capture.add_argument("--height", type=int, help="Output height (default: video height)")
    capture.add_argument("--quiet", action="store_true", help="No progress output")
    capture.set_defaults(func=cmd_capture)

    reap = sub.add_parser("reap", help="Remove orphaned staging partitions")
    reap.add_argument("--ttl", type=float, default=Config.SESSION_TTL_S, help="Idle seconds before a session is orphaned")
    reap.add_argument("--root", help="Staging root (default: FRAMECAST_STAGING_ROOT)")
    reap.set_defaults(func=cmd_reap)

    encode = sub.add_parser("encode", help="Finalize a locally staged session")
    encode.add_argument("session_id")
    encode.add_argument("--frames", type=int, required=True)
    encode.add_argument("--fps", type=float, required=True)
    encode.add_argument("--width", type=int, required=True)
    encode.add_argument("--height", type=int, required=True)
    encode.add_argument("--strategy", choices=["image-sequence", "concat-manifest"])
    encode.add_argument("--root", help="Staging root (default: FRAMECAST_STAGING_ROOT)")
    encode.add_argument("-o", "--output", help="Output MP4 path")
    encode.set_defaults(func=cmd_encode)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except FramecastError as e:
        print(f"\n❌ {e.title}: {e.details}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\n🛑 Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
