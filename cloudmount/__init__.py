"""Expose a remote cloud storage account as a mountable file system."""
