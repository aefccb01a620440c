"""Operator-invoked maintenance and optimization routine."""
