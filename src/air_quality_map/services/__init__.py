"""
Shared infrastructure for talking to data providers.

- http.py - retrying ``requests`` session used by HTTP source capabilities
"""
