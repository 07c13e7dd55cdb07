"""SoftStore back-end packages."""
