"""Waveform indexing and viewport queries."""
