"""Post-processing stages, a stage framework and piecewise linear curves for YUV420 camera frames."""

__version__ = "0.1.0"