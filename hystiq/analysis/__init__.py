"""Analysis of controller behaviour."""
