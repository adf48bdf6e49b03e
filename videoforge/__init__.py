"""videoforge: prompt-to-video render worker."""
