"""Operator tasks: deploy, allocate and audit."""
