"""
Worker module.
Contains the polling worker, the command executor and the process supervisor.
"""
