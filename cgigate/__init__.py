"""cgigate - HTTP-to-CGI gateway.

Maps requests under a URL prefix to executable scripts on disk and runs
them with a sanitized environment under a hard deadline.
"""

__version__ = "0.1.0"
