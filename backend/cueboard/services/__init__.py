"""Scoreboard domain services.

This package contains the scoring logic imported by HTTP routes and socket
handlers, keeping transport concerns separated from the match rules:

- match_state: pure derivation of scores, turn and match outcome
- frame_session: validated mutation of a single frame's event log
- match_controller: serialized match lifecycle commands
- broadcast: fan-out of change notifications to subscribers
"""
