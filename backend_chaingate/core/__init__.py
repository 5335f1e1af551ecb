"""
Core utilities — exception hierarchy shared by store, engine, worker and API.
"""
