"""
Test helper utilities for prs1core testing.

This module provides builders for synthetic chunk files, EDF files,
waveforms and sessions.
"""
