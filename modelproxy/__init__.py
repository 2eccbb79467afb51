# Model Proxy - 3D model generation job engine

__version__ = "1.0.0"
