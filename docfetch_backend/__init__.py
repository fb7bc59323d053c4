"""Backend utilities for secure document downloads.

This package intentionally keeps FastAPI route handlers thin:
- configuration loaded once at startup
- path resolution confined to the documents root
- single-page extraction from PDFs
- delivery planning (file, page or archive)
- streamed ZIP archives with bounded buffering

Security note:
Root confinement is not access control. Anyone who can reach the service can
download anything under the documents root, so deploy it behind whatever
authentication the surrounding system uses, and never log or expose resolved
filesystem paths in responses.
"""
