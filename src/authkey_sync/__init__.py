"""authkey-sync - keeps an SSH authorized-key store in step with configuration changes."""

__version__ = "0.1.0"
