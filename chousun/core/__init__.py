"""Statement text, settings, side-channel files and results."""
