"""Call replay service: timed TTS replay of completed calls and live transcript merging."""
