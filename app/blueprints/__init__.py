"""
Casework Platform
HTTP blueprints, registered by the app factory under /api/v1.
"""
