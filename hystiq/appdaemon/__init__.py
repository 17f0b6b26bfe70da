"""Home Assistant integration through AppDaemon."""
