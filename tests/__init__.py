"""Test suite for matchday."""
