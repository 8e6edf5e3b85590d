#!/usr/bin/env python3
"""
Run the FastAPI endpoint server.

Usage:
    python run_endpoint.py [--host HOST] [--port PORT] [--reload] [--state-file PATH] [--control-file PATH]

Examples:
    python run_endpoint.py                    # Default: 0.0.0.0:8000
    python run_endpoint.py --port 8080        # Custom port
    python run_endpoint.py --reload           # Development mode with auto-reload
    python run_endpoint.py --state-file /tmp/state.json --control-file /tmp/control.json
"""

import argparse
import sys
import os

import uvicorn

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))


def main():
    parser = argparse.ArgumentParser(description="Run the TopHat Blob Counter API server")
    parser.add_argument('--host', default='0.0.0.0', help='Host to bind (default: 0.0.0.0)')
    parser.add_argument('--port', type=int, default=8000, help='Port to bind (default: 8000)')
    parser.add_argument('--reload', action='store_true', help='Enable auto-reload for development')
    parser.add_argument('--state-file', default=None, help='Shared stats file written by main.py')
    parser.add_argument('--control-file', default=None, help='Shared control file polled by main.py')

    args = parser.parse_args()

    # Read at request time by src.endpoint.pipeline_state (also in reload workers)
    if args.state_file:
        os.environ['PIPELINE_STATE_FILE'] = args.state_file
    if args.control_file:
        os.environ['PIPELINE_CONTROL_FILE'] = args.control_file

    print("=" * 60)
    print("TopHat Blob Counter - API Server")
    print("=" * 60)
    print(f"Starting server on http://{args.host}:{args.port}")
    print(f"API docs: http://{args.host}:{args.port}/docs")
    print(f"Health check: http://{args.host}:{args.port}/health")
    print(f"Live stats: http://{args.host}:{args.port}/api/stats/stream")
    print("=" * 60)

    uvicorn.run(
        "src.endpoint.server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info"
    )


if __name__ == '__main__':
    main()
