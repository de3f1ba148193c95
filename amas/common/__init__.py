"""
Common infrastructure shared by every part of the engine: logging,
exceptions, configuration and time helpers.
"""
