"""Imaging package for the photo editor backend.

This package contains the deterministic half of the editor: request
option models, single-step Pillow operations (modulate, gamma, sharpen,
blur, tint, crop, re-encode) and the pipeline that chains them for each
editing mode. See individual modules for details.
"""
