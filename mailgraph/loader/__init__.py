"""Email loading: CSV streaming and RFC 2822 header parsing."""
