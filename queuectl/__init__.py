"""
queuectl - Durable Shell Job Queue

A durable job queue for shell commands: a pool of independent worker processes
claims jobs through an atomic lease, retries failures with exponential backoff
and dead-letters jobs once their retries are exhausted.
"""

__version__ = "1.0.0"
