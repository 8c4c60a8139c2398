"""obsput: versioned artifact uploads to OBS and other S3-compatible storage."""

__version__ = "1.0.0"
