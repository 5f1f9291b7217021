"""Decoders for PRS1 chunk files and EDF/EDF+ waveform files."""
