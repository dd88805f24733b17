"""
Main entry point for the fmtbridge Language Server.

This file is executed when running: python -m fmtbridge

The server communicates with editors via stdin/stdout using JSON-RPC.
"""
from fmtbridge.main import main

if __name__ == "__main__":
    main()
