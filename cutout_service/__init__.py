"""
Person cutout package.

Exposes reusable primitives for loading a segmentation model, turning its
output into a clean alpha mask, compositing the transparent cutout, and
serving the FastAPI application.
"""
