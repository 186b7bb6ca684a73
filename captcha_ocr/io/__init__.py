"""Payload decoding and result writers."""
