"""
API server — command handlers and the FastAPI surface over them.
"""
