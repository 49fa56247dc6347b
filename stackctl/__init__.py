"""
stackctl - development loop for Stackable applications
Builds the frontend and backend, serves the backend and rebuilds on change
"""

__version__ = "0.1.0"
