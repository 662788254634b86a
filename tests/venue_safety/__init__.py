"""
Tests for the Venue Safety Assessment Engine.
"""
