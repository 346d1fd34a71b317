"""Hosted AI effects (background removal, retouch, style transfer, inpainting)."""
