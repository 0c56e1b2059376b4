"""Content-source aggregation core for a video-browsing shell."""

__version__ = "0.1.0"
