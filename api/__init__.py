"""
FastAPI RESTful API for the Boipoka ebook library.

This module provides a REST API for:
- Uploading book metadata and PDFs, stored on Google Drive
- Browsing and administering the book catalog
- User login records and admin role management
- Per-user wishlist and read tracking
"""
