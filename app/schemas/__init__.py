"""Pydantic schemas package.

Folder intent:
  common.py   — CamelModel base + HealthResponse + ErrorResponse
  address.py  — /getAddress and /updateAddress request and response models
"""
