"""
HTTP API for the kvite key-value store, built on Django REST Framework.
"""
