"""cad-forge — generate OpenSCAD models with an AI designer and refine them from renders."""

__version__ = "0.2.0"
