# API v1 request/response schemas.
# Created: 2026-02-20
