"""Shared code for the carrier transport Lambda functions (deployed as a layer)."""
