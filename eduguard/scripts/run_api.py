"""
Run the EduGuard REST API with uvicorn

Usage:
    python -m eduguard.scripts.run_api              # development (auto-reload)
    python -m eduguard.scripts.run_api --production # no reload, 4 workers
"""
import argparse

import uvicorn

APP = "eduguard.api.main:app"


def run_dev_server(port: int) -> None:
    print("=" * 80)
    print("EduGuard - Development Server")
    print("=" * 80)
    print(f"Server: http://localhost:{port}")
    print(f"Swagger UI: http://localhost:{port}/docs")
    print("=" * 80)

    uvicorn.run(APP, host="0.0.0.0", port=port, reload=True, log_level="info", access_log=True)


def run_production_server(port: int, workers: int) -> None:
    print("=" * 80)
    print("EduGuard - Production Server")
    print("=" * 80)
    print(f"Server: http://localhost:{port}")
    print("=" * 80)

    uvicorn.run(APP, host="0.0.0.0", port=port, reload=False, workers=workers, log_level="warning", access_log=True)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run EduGuard API Server")
    parser.add_argument(
        "--production",
        action="store_true",
        help="Run in production mode (no auto-reload, multiple workers)",
    )
    parser.add_argument("--port", type=int, default=8000, help="Port to run the server on (default: 8000)")
    parser.add_argument("--workers", type=int, default=4, help="Worker processes in production mode")
    args = parser.parse_args()

    if args.production:
        run_production_server(args.port, args.workers)
    else:
        run_dev_server(args.port)


if __name__ == "__main__":
    main()
