"""File format header models."""
