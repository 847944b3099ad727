"""Main module for the rss_ingest MCP server.

This module allows the server to be run as a Python module using:
python -m rss_ingest

It delegates to the server application's main function.
"""

from rss_ingest.server.app import main

if __name__ == "__main__":
    main()
