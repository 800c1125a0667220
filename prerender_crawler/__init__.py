"""
Headless-browser crawler for pre-rendering single-page applications.

Crawls a locally served app, follows its links with bounded concurrency and
collects the console and error output of every page.
"""

__version__ = "0.1.0"
