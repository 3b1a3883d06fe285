"""
Oekaki Backend - REST API for a collaborative drawing board

This package provides a FastAPI-based web service where clients pass a drawing
around and each add to it. It enables:

- Creating a drawing from a first rendering
- Revising an existing drawing, up to a fixed number of revisions
- Listing recent drawings and the revision history of one drawing
- Fetching a drawing together with its raw payload

Every revision is mirrored to an external preview host so the gallery can
show a renderable image, while the raw payload lives in object storage and
the metadata in SQLite.

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - submission: The multi-store submission workflow and its rollback
    - validation: Pure checks on incoming submissions
    - database: SQLite metadata store
    - blob_store: S3 or local payload storage
    - preview_host: HTTP client for the preview image host
    - catalog: Read-side queries for the gallery
    - configuration: Config loading and merging logic

Usage:
    Run the API server with:
        uvicorn oekaki_backend.main:app --reload --host 0.0.0.0 --port 8000
"""
