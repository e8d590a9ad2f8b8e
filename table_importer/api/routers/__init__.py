"""
FastAPI routers for organizing API endpoints.

Each module groups the endpoints of one concern: tables, mappings and
input files, and import runs.
"""
