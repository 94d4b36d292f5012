"""Tests for parallx."""
