"""Plex User IP Recorder: tracks the addresses Plex users connect from."""
