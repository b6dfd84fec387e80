"""Routers package — HTTP endpoint definitions.

Files:
  address.py  — /getAddress and /updateAddress (mounted at / and /api)
"""
