#!/usr/bin/env python3
"""
Launch script for Live Tracking Sync backend.

Usage:
    python run_server.py [data_folder] [--cache-folder DIR] [--port PORT] [--host HOST]

Examples:
    python run_server.py                          # Use default ./data/sessions folder
    python run_server.py /path/to/sessions        # Use custom folder
    python run_server.py --cache-folder ./cache   # Persist the point cache on disk
    python run_server.py --demo                   # Generate sample sessions first
"""

import argparse
import os
import sys
from pathlib import Path

# Add livetrack to path
sys.path.insert(0, str(Path(__file__).parent))


def main():
    parser = argparse.ArgumentParser(description="Live Tracking Sync Backend Server")
    parser.add_argument(
        "data_folder",
        nargs="?",
        default="./data/sessions",
        help="Folder of per-session CSV point files (default: ./data/sessions)"
    )
    parser.add_argument(
        "--cache-folder", "-c",
        default=None,
        help="Folder for the local point cache (default: in memory)"
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds between delta fetches (default: 10)"
    )
    parser.add_argument(
        "--demo",
        action="store_true",
        help="Generate sample sessions into the data folder before starting"
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=8000,
        help="Port to run server on (default: 8000)"
    )
    parser.add_argument(
        "--host", "-H",
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1, use 0.0.0.0 for all interfaces)"
    )
    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        help="Run in debug mode"
    )

    args = parser.parse_args()

    data_folder = Path(args.data_folder)

    if args.demo:
        from livetrack.utils.sample_data import generate_demo_data_set
        files = generate_demo_data_set(data_folder)
        print(f"Generated {len(files)} sample sessions in {data_folder}")

    print(f"Live Tracking Sync Backend")
    print(f"=" * 40)
    print(f"Data folder: {data_folder.absolute()}")
    print(f"Cache: {Path(args.cache_folder).absolute() if args.cache_folder else 'in memory'}")
    print(f"Server: http://{args.host}:{args.port}")
    print(f"=" * 40)

    if not data_folder.exists():
        print(f"\nWarning: Data folder does not exist: {data_folder}")

    # Configuration is read from the environment by the app lifespan
    os.environ["LIVETRACK_DATA_FOLDER"] = str(data_folder)
    if args.cache_folder:
        os.environ["LIVETRACK_CACHE_FOLDER"] = str(args.cache_folder)
    if args.poll_interval is not None:
        os.environ["LIVETRACK_POLL_INTERVAL_S"] = str(args.poll_interval)

    print("\nAPI Endpoints:")
    print("  GET    /                         - Health check")
    print("  GET    /health                   - Detailed health")
    print("  POST   /tracking                 - Set tracked sessions")
    print("  GET    /sessions                 - List tracked sessions")
    print("  GET    /sessions/{id}/segments   - Speed-colored segments")
    print("  GET    /sessions/{id}/stats      - Session statistics")
    print("  GET    /sessions/{id}/export.csv - CSV export")
    print("  GET    /cache/stats              - Cache diagnostics")
    print("\nStarting server...")

    import uvicorn

    uvicorn.run(
        "livetrack.main:app",
        host=args.host,
        port=args.port,
        reload=args.debug,
        log_level="info",
    )


if __name__ == "__main__":
    main()
